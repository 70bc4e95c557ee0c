"""Configuration loading and the command line entry point."""

from __future__ import annotations

import argparse
import os
import signal
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import yaml

from mosdns import mlog
from mosdns.coremain.config import Config, config_from_dict
from mosdns.coremain.mosdns import Mosdns

VERSION = "dev/unknown"

_SUPPORTED_EXTS = ("json", "yaml", "yml")


@dataclass
class ServerFlags:
    """Options of the start command.

    cpu is accepted on the command line but has no effect: the interpreter
    has no setting for the number of CPUs it uses.
    """

    config: str = ""
    dir: str = ""
    cpu: int = 0


def _find_config() -> str:
    for ext in _SUPPORTED_EXTS:
        candidate = os.path.abspath(f"config.{ext}")
        if os.path.isfile(candidate):
            return candidate
    raise FileNotFoundError(
        f'Config File "config" Not Found in ["{os.path.abspath(".")}"]'
    )


def load_config(file_path: str = "") -> Tuple[Config, str]:
    """Load a config file and return it with the path used.

    With an empty file_path, a file named config.json, config.yaml or
    config.yml is searched for in the current directory.
    """
    if file_path:
        ext = os.path.splitext(file_path)[1].lstrip(".").lower()
        if ext not in _SUPPORTED_EXTS:
            raise ValueError(f'failed to read config: Unsupported Config Type "{ext}"')
        path = file_path
    else:
        try:
            path = _find_config()
        except OSError as exc:
            raise OSError(f"failed to read config: {exc}") from exc

    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except OSError as exc:
        raise OSError(f"failed to read config: {exc}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"failed to read config: {exc}") from exc

    try:
        cfg = config_from_dict(data)
    except ValueError as exc:
        raise ValueError(f"failed to unmarshal config: {exc}") from exc
    return cfg, path


def new_server(flags: ServerFlags) -> Mosdns:
    """Change directory if asked, load the main config and start a server."""
    lg = mlog.logger()
    if flags.dir:
        try:
            os.chdir(flags.dir)
        except OSError as exc:
            raise OSError(f"failed to change the current working directory, {exc}") from exc
        lg.info("working directory changed", extra={"path": flags.dir})

    try:
        cfg, used = load_config(flags.config)
    except OSError as exc:
        raise OSError(f"fail to load config, {exc}") from exc
    except ValueError as exc:
        raise ValueError(f"fail to load config, {exc}") from exc
    lg.info("main config loaded", extra={"file": used})
    return Mosdns(cfg)


def _start(flags: ServerFlags) -> int:
    m = new_server(flags)

    def on_signal(signum: int, frame: Any) -> None:
        m.logger.warning("signal received", extra={"signal": signal.Signals(signum).name})
        threading.Thread(target=m.close_with_err, args=(None,), daemon=True).start()

    previous: Dict[int, Any] = {}
    if threading.current_thread() is threading.main_thread():
        for sig in (signal.SIGINT, signal.SIGTERM):
            previous[sig] = signal.signal(sig, on_signal)
    try:
        m.safe_close.wait_closed()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mosdns")
    commands = parser.add_subparsers(dest="command")
    start = commands.add_parser("start", help="Start mosdns main program.")
    start.add_argument("-c", "--config", default="", help="config file")
    start.add_argument("-d", "--dir", default="", help="working dir")
    start.add_argument("--cpu", type=int, default=0, help="number of CPUs (no effect)")
    commands.add_parser("version", help="Print out version info and exit.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Run the command line; return the exit status."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command == "version":
        print(VERSION)
        return 0
    if args.command == "start":
        flags = ServerFlags(config=args.config, dir=args.dir, cpu=args.cpu)
        try:
            return _start(flags)
        except Exception as exc:
            mlog.logger().critical(str(exc))
            return 1
    parser.print_help()
    return 0