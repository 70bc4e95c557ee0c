import dataclasses
import http.client
import socket
import threading
import time
import uuid

import pytest

from mosdns.coremain.config import APIConfig, Config, PluginConfig
from mosdns.coremain.mosdns import ApiRouter, Mosdns, new_test_mosdns
from mosdns.coremain.plugin import (
    del_plugin_type,
    load_new_preset_plugin_funcs,
    reg_new_plugin_func,
)
from mosdns.mlog import LogConfig


@dataclasses.dataclass
class _Args:
    name: str = ""
    size: int = 0


class _Plugin:
    def __init__(self, bp, args):
        self.bp = bp
        self.args = args
        self.closed = threading.Event()

    def close(self):
        self.closed.set()


@pytest.fixture
def plugin_type():
    typ = f"test_{uuid.uuid4().hex}"
    created = []

    def factory(bp, args):
        plugin = _Plugin(bp, args)
        created.append(plugin)
        return plugin

    reg_new_plugin_func(typ, factory, _Args)
    yield typ, created
    del_plugin_type(typ)


@pytest.fixture
def failing_type():
    typ = f"fail_{uuid.uuid4().hex}"

    def factory(bp, args):
        raise RuntimeError("boom")

    reg_new_plugin_func(typ, factory, _Args)
    yield typ
    del_plugin_type(typ)


@pytest.fixture
def web_type():
    typ = f"web_{uuid.uuid4().hex}"

    def factory(bp, args):
        sub = ApiRouter()
        sub.add_route("GET", "/hello", lambda method, path: "hello")
        bp.reg_api(sub)
        return object()

    reg_new_plugin_func(typ, factory, _Args)
    yield typ
    del_plugin_type(typ)


def _config(plugins=(), include=(), http=""):
    return Config(
        log=LogConfig(level="error"),
        include=list(include),
        plugins=list(plugins),
        api=APIConfig(http=http),
    )


def _shutdown(m):
    m.close_with_err(None)
    m.safe_close.wait_closed()


def test_router_dispatches_registered_route():
    r = ApiRouter()
    r.add_route("GET", "/a", lambda method, path: "hello")
    assert r.dispatch("GET", "/a") == (200, b"hello")


def test_router_handler_may_return_status():
    r = ApiRouter()
    r.add_route("post", "/b", lambda method, path: (201, b"made"))
    assert r.dispatch("POST", "/b") == (201, b"made")


def test_router_not_found_lists_routes():
    r = ApiRouter()
    r.add_route("GET", "/a", lambda method, path: "x")
    status, body = r.dispatch("GET", "/missing")
    assert status == 404
    assert body == b"Invalid request GET /missing\n\nAvailable api urls:\nGET /a\n"


def test_router_method_not_allowed():
    r = ApiRouter()
    r.add_route("GET", "/a", lambda method, path: "x")
    status, body = r.dispatch("DELETE", "/a")
    assert status == 405
    assert body.startswith(b"Invalid request DELETE /a")


def test_router_mount_sub_router():
    r = ApiRouter()
    sub = ApiRouter()
    sub.add_route("GET", "/stats", lambda method, path: path)
    r.mount("/plugins/x", sub)
    assert r.dispatch("GET", "/plugins/x/stats") == (200, b"/stats")
    assert ("GET", "/plugins/x/stats") in r.routes()


def test_router_mount_callable_sees_rest_of_path():
    r = ApiRouter()
    r.mount("/p", lambda method, path: path)
    assert r.dispatch("GET", "/p/a/b") == (200, b"/a/b")
    assert r.dispatch("GET", "/p") == (200, b"/")
    assert r.dispatch("GET", "/px")[0] == 404


def test_router_rejects_duplicate_mount_and_bad_pattern():
    r = ApiRouter()
    r.mount("/p", lambda method, path: "")
    with pytest.raises(ValueError):
        r.mount("/p", lambda method, path: "")
    with pytest.raises(ValueError):
        r.add_route("GET", "nope", lambda method, path: "")


def test_new_test_mosdns_returns_plugins():
    plugin = object()
    m = new_test_mosdns({"p": plugin})
    assert m.get_plugin("p") is plugin
    assert m.get_plugin("other") is None


def test_reg_plugin_api_mounts_under_plugins():
    m = new_test_mosdns({})
    sub = ApiRouter()
    sub.add_route("GET", "/info", lambda method, path: "info")
    m.reg_plugin_api("tag1", sub)
    assert m.api_router.dispatch("GET", "/plugins/tag1/info") == (200, b"info")


def test_loads_plugin_with_decoded_args(plugin_type):
    typ, created = plugin_type
    m = Mosdns(_config([PluginConfig(tag="p1", type=typ, args={"name": "n", "size": "3"})]))
    try:
        plugin = m.get_plugin("p1")
        assert plugin is created[0]
        assert plugin.args == _Args(name="n", size=3)
        assert plugin.bp.tag == "p1"
        assert plugin.bp.mosdns is m
    finally:
        _shutdown(m)


def test_anonymous_plugin_gets_generated_tag(plugin_type):
    typ, created = plugin_type
    expected = f"anonymouse_{typ}_{len(load_new_preset_plugin_funcs())}"
    m = Mosdns(_config([PluginConfig(type=typ)]))
    try:
        assert m.get_plugin(expected) is created[0]
    finally:
        _shutdown(m)


def test_duplicate_tag_is_rejected(plugin_type):
    typ, _ = plugin_type
    cfg = _config([PluginConfig(tag="p1", type=typ), PluginConfig(tag="p1", type=typ)])
    with pytest.raises(RuntimeError, match="duplicated plugin tag p1"):
        Mosdns(cfg)


def test_unknown_plugin_type_is_rejected():
    with pytest.raises(RuntimeError, match="plugin type no_such_type not defined"):
        Mosdns(_config([PluginConfig(tag="x", type="no_such_type")]))


def test_bad_args_are_rejected(plugin_type):
    typ, _ = plugin_type
    cfg = _config([PluginConfig(tag="x", type=typ, args={"unknown": 1})])
    with pytest.raises(RuntimeError, match="unable to decode plugin args"):
        Mosdns(cfg)


def test_failure_closes_loaded_plugins(plugin_type, failing_type):
    typ, created = plugin_type
    cfg = _config([PluginConfig(tag="ok", type=typ), PluginConfig(tag="bad", type=failing_type)])
    with pytest.raises(RuntimeError, match="boom"):
        Mosdns(cfg)
    assert created[0].closed.is_set()


def test_close_signal_closes_plugins(plugin_type):
    typ, created = plugin_type
    m = Mosdns(_config([PluginConfig(tag="p", type=typ)]))
    assert not created[0].closed.is_set()
    _shutdown(m)
    assert created[0].closed.is_set()


def test_close_with_err_is_raised_by_wait_closed(plugin_type):
    typ, _ = plugin_type
    m = Mosdns(_config([PluginConfig(tag="p", type=typ)]))
    m.close_with_err(ValueError("stop now"))
    with pytest.raises(ValueError, match="stop now"):
        m.safe_close.wait_closed()


def test_include_is_loaded_first(plugin_type, tmp_path):
    typ, created = plugin_type
    sub = tmp_path / "sub.yaml"
    sub.write_text(f"plugins:\n  - tag: inc\n    type: {typ}\n")
    m = Mosdns(_config([PluginConfig(tag="main", type=typ)], include=[str(sub)]))
    try:
        assert [p.bp.tag for p in created] == ["inc", "main"]
        assert m.get_plugin("inc") is created[0]
    finally:
        _shutdown(m)


def test_include_depth_is_limited(tmp_path):
    loop = tmp_path / "loop.yaml"
    loop.write_text(f"include:\n  - {loop}\n")
    with pytest.raises(RuntimeError, match="maximum include depth reached"):
        Mosdns(_config(include=[str(loop)]))


def test_invalid_log_level():
    with pytest.raises(ValueError, match="failed to init logger"):
        Mosdns(Config(log=LogConfig(level="loud")))


def _free_port():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _get(port, path):
    deadline = time.monotonic() + 5
    while True:
        try:
            conn = http.client.HTTPConnection("127.0.0.1", port, timeout=1)
            try:
                conn.request("GET", path)
                resp = conn.getresponse()
                return resp.status, resp.read()
            finally:
                conn.close()
        except OSError:
            if time.monotonic() > deadline:
                raise
            time.sleep(0.05)


def test_api_server_serves_plugin_routes(web_type):
    port = _free_port()
    m = Mosdns(_config([PluginConfig(tag="web", type=web_type)], http=f"127.0.0.1:{port}"))
    try:
        assert _get(port, "/plugins/web/hello") == (200, b"hello")
        status, body = _get(port, "/nope")
        assert status == 404
        assert b"GET /plugins/web/hello" in body
    finally:
        _shutdown(m)


def test_api_server_bind_failure_closes_server():
    with socket.socket() as busy:
        busy.bind(("127.0.0.1", 0))
        busy.listen(1)
        port = busy.getsockname()[1]
        m = Mosdns(_config(http=f"127.0.0.1:{port}"))
        with pytest.raises(OSError):
            m.safe_close.wait_closed()