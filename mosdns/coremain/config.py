"""The structure of the main configuration file."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

from mosdns.coremain.plugin import decode_args
from mosdns.mlog import LogConfig


@dataclass
class PluginConfig:
    """One plugin: an optional tag, a required type and type-specific args."""

    tag: str = ""
    type: str = ""
    args: Any = None


@dataclass
class APIConfig:
    """The address of the HTTP API server; empty disables it."""

    http: str = ""


@dataclass
class Config:
    log: LogConfig = field(default_factory=LogConfig)
    include: List[str] = field(default_factory=list)
    plugins: List[PluginConfig] = field(default_factory=list)
    api: APIConfig = field(default_factory=APIConfig)


def config_from_dict(data: Optional[Mapping[str, Any]]) -> Config:
    """Build a Config from parsed file content.

    Keys match case-insensitively, unknown keys are errors and scalar values
    are converted weakly (e.g. "true" to True, a single item to a list).
    """
    return decode_args(data, Config())