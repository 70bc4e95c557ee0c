"""Plugin type registry, argument decoding and the plugin base handle."""

from __future__ import annotations

import dataclasses
import inspect
import logging
import threading
import types
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union, get_args, get_origin

NewPluginFunc = Callable[["BP", Any], Any]
NewPluginArgsFunc = Callable[[], Any]
NewPresetPluginFunc = Callable[["BP"], Any]


@dataclass(frozen=True)
class PluginTypeInfo:
    """How to build a plugin type: its constructor and its args factory."""

    new_plugin: NewPluginFunc
    new_args: NewPluginArgsFunc


_plugin_types: Dict[str, PluginTypeInfo] = {}
_plugin_types_lock = threading.Lock()

_preset_funcs: Dict[str, NewPresetPluginFunc] = {}
_preset_lock = threading.Lock()


def reg_new_plugin_func(typ: str, init_func: NewPluginFunc, args_factory: NewPluginArgsFunc) -> None:
    """Register a plugin type; registering the same type twice is an error."""
    with _plugin_types_lock:
        if typ in _plugin_types:
            raise ValueError(f"duplicate plugin type [{typ}]")
        _plugin_types[typ] = PluginTypeInfo(new_plugin=init_func, new_args=args_factory)


def del_plugin_type(typ: str) -> None:
    """Unregister a plugin type; unknown types are ignored."""
    with _plugin_types_lock:
        _plugin_types.pop(typ, None)


def get_plugin_type(typ: str) -> Optional[PluginTypeInfo]:
    """Return the registration of typ, or None."""
    with _plugin_types_lock:
        return _plugin_types.get(typ)


def get_all_plugin_types() -> List[str]:
    """Return every registered, configurable plugin type."""
    with _plugin_types_lock:
        return list(_plugin_types)


def reg_new_preset_plugin_func(tag: str, func: NewPresetPluginFunc) -> None:
    """Register a plugin that is always loaded under tag."""
    with _preset_lock:
        if tag in _preset_funcs:
            raise ValueError(f"preset plugin {tag} has already been registered")
        _preset_funcs[tag] = func


def load_new_preset_plugin_funcs() -> Dict[str, NewPresetPluginFunc]:
    """Return a copy of the preset plugin registry."""
    with _preset_lock:
        return dict(_preset_funcs)


_TRUE_TEXT = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_TEXT = {"", "0", "f", "F", "FALSE", "false", "False"}


def _where(path: str) -> str:
    return path or "value"


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def _to_bool(value: Any, path: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        if value in _TRUE_TEXT:
            return True
        if value in _FALSE_TEXT:
            return False
    raise ValueError(f"{_where(path)}: cannot decode {value!r} as bool")


def _to_str(value: Any, path: str) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode()
    raise ValueError(f"{_where(path)}: cannot decode {type(value).__name__} as string")


def _to_int(value: Any, path: str) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        if value == "":
            return 0
        try:
            return int(value, 0)
        except ValueError:
            pass
    raise ValueError(f"{_where(path)}: cannot decode {value!r} as int")


def _to_float(value: Any, path: str) -> float:
    if isinstance(value, (bool, int, float)):
        return float(value)
    if isinstance(value, str):
        if value == "":
            return 0.0
        try:
            return float(value)
        except ValueError:
            pass
    raise ValueError(f"{_where(path)}: cannot decode {value!r} as float")


_SCALARS: Dict[type, Callable[[Any, str], Any]] = {
    bool: _to_bool,
    str: _to_str,
    int: _to_int,
    float: _to_float,
}

_NAMED_TYPES: Dict[str, Any] = {
    "str": str,
    "int": int,
    "bool": bool,
    "float": float,
    "bytes": bytes,
    "Any": Any,
    "object": object,
    "None": type(None),
    "NoneType": type(None),
}


def _split_top(text: str, sep: str) -> List[str]:
    """Split text at sep where it is not nested inside brackets."""
    parts: List[str] = []
    depth = 0
    current: List[str] = []
    for ch in text:
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
        if ch == sep and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    parts.append("".join(current).strip())
    return parts


def _make_union(options: List[Any]) -> Any:
    if len(options) == 1:
        return options[0]
    return Union[tuple(options)]


def _resolve(annotation: Any, namespace: Mapping) -> Any:
    """Turn a string annotation into a type, understanding common forms only."""
    if not isinstance(annotation, str):
        return annotation
    text = annotation.strip()
    for prefix in ("typing.", "builtins."):
        if text.startswith(prefix):
            text = text[len(prefix):]
    alternatives = _split_top(text, "|")
    if len(alternatives) > 1:
        return _make_union([_resolve(alt, namespace) for alt in alternatives])
    if text.endswith("]") and "[" in text:
        name, _, inner = text.partition("[")
        name = name.strip()
        for prefix in ("typing.", "collections.abc."):
            if name.startswith(prefix):
                name = name[len(prefix):]
        params = [_resolve(p, namespace) for p in _split_top(inner[:-1], ",")]
        if name == "Optional" and len(params) == 1:
            return Optional[params[0]]
        if name == "Union":
            return _make_union(params)
        if name in ("list", "List", "Sequence") and len(params) == 1:
            return List[params[0]]
        if name in ("dict", "Dict", "Mapping") and len(params) == 2:
            return Dict[params[0], params[1]]
        return Any
    if text in _NAMED_TYPES:
        return _NAMED_TYPES[text]
    found = namespace.get(text)
    if isinstance(found, type):
        return found
    return Any


def _field_types(cls: type) -> Dict[str, Any]:
    module = inspect.getmodule(cls)
    namespace: Mapping = vars(module) if module is not None else {}
    return {f.name: _resolve(f.type, namespace) for f in dataclasses.fields(cls)}


def _zero(tp: Any) -> Any:
    if isinstance(tp, type) and dataclasses.is_dataclass(tp):
        return tp()
    origin = get_origin(tp)
    if origin is list:
        return []
    if origin is dict:
        return {}
    if tp in _SCALARS:
        return tp()
    return None


def _convert(value: Any, tp: Any, path: str) -> Any:
    if tp is Any or tp is object:
        return value
    origin = get_origin(tp)
    if origin is Union or origin is types.UnionType:
        options = get_args(tp)
        if value is None and type(None) in options:
            return None
        concrete = [t for t in options if t is not type(None)]
        return _convert(value, concrete[0], path) if len(concrete) == 1 else value
    if value is None:
        return _zero(tp)
    if origin is list:
        (item_type,) = get_args(tp) or (Any,)
        items = value if isinstance(value, (list, tuple)) else [value]
        return [_convert(item, item_type, f"{path}[{i}]") for i, item in enumerate(items)]
    if origin is dict:
        if not isinstance(value, Mapping):
            raise ValueError(f"{_where(path)}: expected a mapping, got {type(value).__name__}")
        key_type, value_type = get_args(tp) or (Any, Any)
        return {
            _convert(k, key_type, path): _convert(v, value_type, _join(path, str(k)))
            for k, v in value.items()
        }
    if isinstance(tp, type) and dataclasses.is_dataclass(tp):
        if isinstance(value, tp):
            return value
        return _decode_into(value, tp(), path)
    scalar = _SCALARS.get(tp)
    if scalar is not None:
        return scalar(value, path)
    if isinstance(tp, type) and not isinstance(value, tp):
        raise ValueError(f"{_where(path)}: cannot decode {type(value).__name__} as {tp.__name__}")
    return value


def _decode_into(raw: Any, target: Any, path: str) -> Any:
    if not isinstance(raw, Mapping):
        raise ValueError(f"{_where(path)}: expected a mapping, got {type(raw).__name__}")
    if isinstance(target, dict):
        target.update(raw)
        return target
    if not dataclasses.is_dataclass(target) or isinstance(target, type):
        raise ValueError(f"{_where(path)}: cannot decode into {type(target).__name__}")
    hints = _field_types(type(target))
    by_key = {f.name.lower(): f for f in dataclasses.fields(target)}
    unused = []
    for key, value in raw.items():
        fld = by_key.get(str(key).lower())
        if fld is None:
            unused.append(str(key))
            continue
        setattr(target, fld.name, _convert(value, hints.get(fld.name, Any), _join(path, fld.name)))
    if unused:
        raise ValueError(f"{_where(path)}: invalid keys: {', '.join(sorted(unused))}")
    return target


def decode_args(raw: Any, args: Any) -> Any:
    """Decode raw plugin args into args and return the result.

    raw is returned as is when it already has the type of args. A mapping is
    decoded into a dataclass (weakly typed, unknown keys rejected) or merged
    into a dict.
    """
    if type(raw) is type(args):
        return raw
    if raw is None:
        return args
    return _decode_into(raw, args, "")


class BP:
    """What every plugin gets: its tag, a named logger and the owning server."""

    def __init__(self, tag: str, mosdns: Any) -> None:
        self._tag = tag
        self._mosdns = mosdns
        self._logger: logging.Logger = mosdns.logger.getChild(tag)

    @property
    def logger(self) -> logging.Logger:
        """The plugin's logger, named after its tag."""
        return self._logger

    @property
    def mosdns(self) -> Any:
        """The server that owns the plugin."""
        return self._mosdns

    @property
    def tag(self) -> str:
        """The plugin tag, unique outside of tests."""
        return self._tag

    def reg_api(self, handler: Any) -> None:
        """Mount handler under /plugins/<tag>; call it at most once."""
        self._mosdns.reg_plugin_api(self._tag, handler)