import json
import os

import pytest

from mosdns.coremain.run import ServerFlags, load_config, main, new_server


def test_load_explicit_yaml(tmp_path):
    path = tmp_path / "main.yaml"
    path.write_text(
        "log:\n  level: error\n"
        "plugins:\n  - tag: a\n    type: t\n    args:\n      k: v\n"
        "api:\n  http: ''\n"
    )
    cfg, used = load_config(str(path))
    assert used == str(path)
    assert cfg.log.level == "error"
    assert cfg.plugins[0].tag == "a"
    assert cfg.plugins[0].type == "t"
    assert cfg.plugins[0].args == {"k": "v"}
    assert cfg.api.http == ""


def test_load_json(tmp_path):
    path = tmp_path / "main.json"
    path.write_text(json.dumps({"include": ["x.yaml"]}))
    cfg, _ = load_config(str(path))
    assert cfg.include == ["x.yaml"]


def test_load_weakly_typed_values(tmp_path):
    path = tmp_path / "main.yml"
    path.write_text("log:\n  production: 'true'\n")
    cfg, _ = load_config(str(path))
    assert cfg.log.production is True


def test_search_config_in_current_dir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "config.yaml").write_text("log: {level: warn}\n")
    cfg, used = load_config("")
    assert os.path.samefile(used, tmp_path / "config.yaml")
    assert cfg.log.level == "warn"


def test_search_without_config_fails(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(OSError, match="failed to read config"):
        load_config("")


def test_missing_file_fails(tmp_path):
    with pytest.raises(OSError, match="failed to read config"):
        load_config(str(tmp_path / "absent.yaml"))


def test_unknown_key_fails(tmp_path):
    path = tmp_path / "main.yaml"
    path.write_text("nonsense: 1\n")
    with pytest.raises(ValueError, match="failed to unmarshal config"):
        load_config(str(path))


def test_broken_yaml_fails(tmp_path):
    path = tmp_path / "main.yaml"
    path.write_text("log: [unclosed\n")
    with pytest.raises(ValueError, match="failed to read config"):
        load_config(str(path))


def test_unsupported_extension_fails(tmp_path):
    path = tmp_path / "main.txt"
    path.write_text("log: {}\n")
    with pytest.raises(ValueError, match="Unsupported Config Type"):
        load_config(str(path))


def test_new_server_changes_directory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    work = tmp_path / "work"
    work.mkdir()
    (work / "config.yaml").write_text("log:\n  level: error\n")
    m = new_server(ServerFlags(dir=str(work)))
    try:
        assert os.path.samefile(os.getcwd(), work)
        assert m.get_plugin("anything") is None
    finally:
        m.close_with_err(None)
        m.safe_close.wait_closed()


def test_new_server_bad_dir(tmp_path):
    with pytest.raises(OSError, match="failed to change the current working directory"):
        new_server(ServerFlags(dir=str(tmp_path / "absent")))


def test_new_server_missing_config(tmp_path):
    with pytest.raises(OSError, match="fail to load config"):
        new_server(ServerFlags(config=str(tmp_path / "absent.yaml")))


def test_main_version(capsys):
    assert main(["version"]) == 0
    assert capsys.readouterr().out == "dev/unknown\n"


def test_main_start_with_missing_config_fails(tmp_path):
    assert main(["start", "-c", str(tmp_path / "absent.yaml")]) == 1


def test_main_without_command_prints_help(capsys):
    assert main([]) == 0
    assert "start" in capsys.readouterr().out