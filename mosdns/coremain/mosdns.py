"""The server instance: plugin loading, the HTTP API and shutdown."""

from __future__ import annotations

import contextlib
import logging
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import urlsplit

from mosdns import mlog
from mosdns.coremain.config import Config, PluginConfig
from mosdns.coremain.plugin import (
    BP,
    decode_args,
    get_plugin_type,
    load_new_preset_plugin_funcs,
)
from mosdns.safe_close import SafeClose

MAX_INCLUDE_DEPTH = 8

# A handler is called as handler(method, path) and returns a body (str or
# bytes) or a (status, body) pair.
Handler = Callable[[str, str], Any]


def _check_pattern(path: str) -> None:
    if not path.startswith("/"):
        raise ValueError(f"routing pattern must begin with '/' in '{path}'")


def _to_bytes(body: Any) -> bytes:
    if body is None:
        return b""
    if isinstance(body, str):
        return body.encode("utf-8")
    return bytes(body)


def _respond(result: Any) -> Tuple[int, bytes]:
    if isinstance(result, tuple):
        status, body = result
        return int(status), _to_bytes(body)
    return 200, _to_bytes(result)


class ApiRouter:
    """Routes requests by method and path; sub routers or handlers can be mounted."""

    def __init__(self) -> None:
        self._routes: Dict[Tuple[str, str], Handler] = {}
        self._mounts: Dict[str, Union["ApiRouter", Handler]] = {}

    def add_route(self, method: str, path: str, handler: Handler) -> None:
        """Register handler for method and path, replacing an earlier one."""
        _check_pattern(path)
        self._routes[(method.upper(), path)] = handler

    def mount(self, prefix: str, handler: Union["ApiRouter", Handler]) -> None:
        """Serve prefix and everything below it with handler.

        The handler sees the path with the prefix removed.
        """
        _check_pattern(prefix)
        key = prefix.rstrip("/")
        if key in self._mounts:
            raise ValueError(f"attempting to mount a handler on an existing path, '{prefix}'")
        self._mounts[key] = handler

    def routes(self) -> List[Tuple[str, str]]:
        """All (method, path) pairs served, mounted routers included."""
        found = list(self._routes)
        for prefix, target in list(self._mounts.items()):
            if isinstance(target, ApiRouter):
                found.extend((method, prefix + path) for method, path in target.routes())
            else:
                found.append(("*", prefix + "/*"))
        return found

    def dispatch(self, method: str, path: str) -> Tuple[int, bytes]:
        """Serve a request and return its status and body."""
        method = method.upper()
        handler = self._routes.get((method, path))
        if handler is not None:
            return _respond(handler(method, path))
        for prefix, target in list(self._mounts.items()):
            if path == prefix or path.startswith(prefix + "/"):
                rest = path[len(prefix):] or "/"
                if isinstance(target, ApiRouter):
                    return target.dispatch(method, rest)
                return _respond(target(method, rest))
        known_path = any(route_path == path for _, route_path in self._routes)
        status = 405 if known_path else 404
        return status, self._invalid_request_page(method, path)

    def _invalid_request_page(self, method: str, path: str) -> bytes:
        lines = [f"Invalid request {method} {path}\n\n", "Available api urls:\n"]
        lines.extend(f"{m} {p}\n" for m, p in self.routes())
        return "".join(lines).encode("utf-8")


class _ApiRequestHandler(BaseHTTPRequestHandler):
    def _handle(self) -> None:
        router: ApiRouter = self.server.router  # type: ignore[attr-defined]
        try:
            status, body = router.dispatch(self.command, urlsplit(self.path).path)
        except Exception as exc:  # a failing handler must not kill the server
            status, body = 500, f"internal error: {exc}\n".encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    do_GET = do_POST = do_PUT = do_DELETE = do_PATCH = do_HEAD = do_OPTIONS = _handle

    def log_message(self, format: str, *args: Any) -> None:
        return


class _ApiServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: Tuple[str, int], router: ApiRouter) -> None:
        self.router = router
        if ":" in address[0]:
            self.address_family = socket.AF_INET6
        super().__init__(address, _ApiRequestHandler)


def _split_host_port(addr: str) -> Tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ValueError(f"address {addr}: missing port in address")
    host = host.strip("[]")
    try:
        return host, int(port) if port else 0
    except ValueError:
        raise ValueError(f"address {addr}: invalid port") from None


class Mosdns:
    """A running server: its plugins, logger, API router and shutdown control."""

    def __init__(self, config: Config) -> None:
        try:
            lg = mlog.new_logger(config.log)
        except (ValueError, OSError) as exc:
            raise ValueError(f"failed to init logger: {exc}") from exc
        self._init_state(lg, {})

        if config.api.http:
            self._start_api_server(config.api.http)

        # From here on every loaded plugin is closed when the close signal comes.
        self._sc.attach(self._close_plugins_on_signal)

        try:
            self._load_preset_plugins()
            self._load_plugins_from_cfg(config, 0)
        except Exception as exc:
            self._sc.send_close_signal(exc)
            with contextlib.suppress(Exception):
                self._sc.wait_closed()
            raise
        self._logger.info("all plugins are loaded")

    def _init_state(self, lg: logging.Logger, plugins: Dict[str, Any]) -> None:
        self._logger = lg
        self._plugins = plugins
        self._router = ApiRouter()
        self._sc = SafeClose()

    @property
    def safe_close(self) -> SafeClose:
        """The shutdown control of this server."""
        return self._sc

    def close_with_err(self, err: Optional[BaseException]) -> None:
        """Send the close signal with err."""
        self._sc.send_close_signal(err)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def get_plugin(self, tag: str) -> Any:
        """Return the plugin loaded under tag, or None."""
        return self._plugins.get(tag)

    @property
    def api_router(self) -> ApiRouter:
        return self._router

    def reg_plugin_api(self, tag: str, handler: Union[ApiRouter, Handler]) -> None:
        """Mount handler under /plugins/<tag>."""
        self._router.mount("/plugins/" + tag, handler)

    def _start_api_server(self, addr: str) -> None:
        def serve(done: Callable[[], None], close_signal: threading.Event) -> None:
            try:
                try:
                    server = _ApiServer(_split_host_port(addr), self._router)
                except (OSError, ValueError) as exc:
                    self._sc.send_close_signal(exc)
                    return
                self._logger.info("starting api http server", extra={"addr": addr})
                worker = threading.Thread(
                    target=self._serve_forever, args=(server,), name="api-http", daemon=True
                )
                worker.start()
                close_signal.wait()
                server.shutdown()
                server.server_close()
            finally:
                done()

        self._sc.attach(serve)

    def _serve_forever(self, server: _ApiServer) -> None:
        try:
            server.serve_forever()
        except Exception as exc:
            self._sc.send_close_signal(exc)

    def _close_plugins_on_signal(
        self, done: Callable[[], None], close_signal: threading.Event
    ) -> None:
        try:
            close_signal.wait()
            self._logger.info("starting shutdown sequences")
            for tag, plugin in list(self._plugins.items()):
                close = getattr(plugin, "close", None)
                if callable(close):
                    self._logger.info("closing plugin", extra={"tag": tag})
                    try:
                        close()
                    except Exception as exc:
                        self._logger.warning(
                            "failed to close plugin", extra={"tag": tag, "error": str(exc)}
                        )
            self._logger.info("all plugins were closed")
        finally:
            done()

    def _load_preset_plugins(self) -> None:
        for tag, func in load_new_preset_plugin_funcs().items():
            try:
                plugin = func(BP(tag, self))
            except Exception as exc:
                raise RuntimeError(f"failed to init preset plugin {tag}, {exc}") from exc
            self._plugins[tag] = plugin

    def _load_plugins_from_cfg(self, cfg: Config, include_depth: int) -> None:
        """Load the plugins of cfg, following its includes first."""
        if include_depth > MAX_INCLUDE_DEPTH:
            raise ValueError("maximum include depth reached")
        include_depth += 1

        from mosdns.coremain.run import load_config

        for path in cfg.include:
            try:
                sub_cfg, used = load_config(path)
            except (OSError, ValueError) as exc:
                raise RuntimeError(f"failed to read config from {path}, {exc}") from exc
            self._logger.info("load config", extra={"file": used})
            try:
                self._load_plugins_from_cfg(sub_cfg, include_depth)
            except Exception as exc:
                raise RuntimeError(f"failed to load config from {path}, {exc}") from exc

        for i, pc in enumerate(cfg.plugins):
            try:
                self._new_plugin(pc)
            except Exception as exc:
                raise RuntimeError(f"failed to init plugin #{i} {pc.tag}, {exc}") from exc

    def _new_plugin(self, pc: PluginConfig) -> None:
        tag = pc.tag or f"anonymouse_{pc.type}_{len(self._plugins)}"
        if tag in self._plugins:
            raise ValueError(f"duplicated plugin tag {tag}")
        info = get_plugin_type(pc.type)
        if info is None:
            raise ValueError(f"plugin type {pc.type} not defined")
        try:
            args = decode_args(pc.args, info.new_args())
        except ValueError as exc:
            raise ValueError(f"unable to decode plugin args: {exc}") from exc
        self._logger.info("loading plugin", extra={"tag": tag, "type": pc.type})
        try:
            plugin = info.new_plugin(BP(tag, self), args)
        except Exception as exc:
            raise RuntimeError(f"failed to init plugin: {exc}") from exc
        self._plugins[tag] = plugin


def new_test_mosdns(plugins: Dict[str, Any]) -> Mosdns:
    """Return a silent server holding plugins, with nothing started."""
    m = Mosdns.__new__(Mosdns)
    m._init_state(mlog.nop(), plugins)
    return m