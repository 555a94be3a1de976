from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml
from dotenv import load_dotenv

from .retry import RetryPolicy

PKG_ROOT = Path(__file__).resolve().parent
DEFAULT_CFG = PKG_ROOT / "config" / "indexer.yaml"
ENV_CONFIG_PATH_VAR = "REWARDS_INDEXER_CONFIG"

DEFAULT_EVENT_NAME = "RewardsDeposit"
RECORD_ERROR_MODES = ("continue", "abort")
SENSITIVE_NAME_TOKENS: Tuple[str, ...] = ("URL", "TOKEN", "KEY", "SECRET", "PASSWORD")


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class NetworkConfig:
    name: str
    ws_url: str
    contract: Optional[str] = None
    events: Dict[str, str] = field(default_factory=dict)

    def topic_for(self, event_name: str) -> Optional[str]:
        return self.events.get(event_name)


@dataclass(frozen=True)
class IndexerConfig:
    networks: Dict[str, NetworkConfig]
    event_name: str = DEFAULT_EVENT_NAME
    on_record_error: str = "continue"
    setup_timeout_seconds: Optional[float] = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    source: Optional[Path] = None

    def network(self, name: str) -> NetworkConfig:
        try:
            return self.networks[name]
        except KeyError:
            raise ConfigError(f"Unknown network: {name!r} (configured: {', '.join(sorted(self.networks)) or 'none'})") from None


def _resolve_env(val: Any) -> Any:
    """Resolve ENV:FOO placeholders recursively."""
    if isinstance(val, str) and val.startswith("ENV:"):
        env_key = val.split("ENV:", 1)[1].strip()
        v = os.environ.get(env_key)
        if v is None or v == "":
            raise ConfigError(f"Missing required environment variable: {env_key}")
        return v
    if isinstance(val, dict):
        return {k: _resolve_env(v) for k, v in val.items()}
    if isinstance(val, list):
        return [_resolve_env(v) for v in val]
    return val


def _redact_value(key: str, value: Any) -> Any:
    if isinstance(value, str) and any(tok in str(key).upper() for tok in SENSITIVE_NAME_TOKENS):
        return "****" if len(value) <= 4 else f"{'*' * 4}…{value[-4:]}"
    return value


def redacted(d: Any) -> Any:
    if isinstance(d, dict):
        return {k: redacted(v) if isinstance(v, (dict, list)) else _redact_value(k, v) for k, v in d.items()}
    if isinstance(d, list):
        return [redacted(v) for v in d]
    return d


def _opt_float(raw: Dict[str, Any], key: str, default: Optional[float]) -> Optional[float]:
    v = raw.get(key, default)
    if v is None:
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        raise ConfigError(f"'{key}' must be a number, got {v!r}") from None
    if f < 0:
        raise ConfigError(f"'{key}' must be >= 0")
    return f


def _parse_retry(raw: Any) -> RetryPolicy:
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ConfigError("'retry' must be a mapping")
    max_attempts = raw.get("max_attempts")
    try:
        return RetryPolicy(
            delay_seconds=_opt_float(raw, "delay_seconds", 60.0),
            max_attempts=None if max_attempts is None else int(max_attempts),
            backoff=str(raw.get("backoff", "fixed")),
            max_delay_seconds=_opt_float(raw, "max_delay_seconds", 600.0),
            jitter=_opt_float(raw, "jitter", 0.0),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid retry settings: {e}") from e


def _parse_network(name: str, raw: Any) -> NetworkConfig:
    if not isinstance(raw, dict):
        raise ConfigError(f"network {name!r} must be a mapping")
    ws_url = raw.get("ws_url")
    if not ws_url:
        raise ConfigError(f"network {name!r} is missing 'ws_url'")
    events = raw.get("events") or {}
    if not isinstance(events, dict):
        raise ConfigError(f"network {name!r}: 'events' must map event name -> topic0")
    return NetworkConfig(
        name=name,
        ws_url=str(ws_url),
        contract=raw.get("contract"),
        events={str(k): str(v) for k, v in events.items()},
    )


def parse_indexer_config(section: Dict[str, Any], source: Optional[Path] = None) -> IndexerConfig:
    """Turn an already ENV-resolved ``indexer`` mapping into an :class:`IndexerConfig`."""
    networks_raw = section.get("networks")
    if not isinstance(networks_raw, dict) or not networks_raw:
        raise ConfigError("'indexer.networks' must be a non-empty mapping")

    mode = str(section.get("on_record_error", "continue"))
    if mode not in RECORD_ERROR_MODES:
        raise ConfigError(f"'on_record_error' must be one of {RECORD_ERROR_MODES}, got {mode!r}")

    return IndexerConfig(
        networks={str(n): _parse_network(str(n), v) for n, v in networks_raw.items()},
        event_name=str(section.get("event_name") or DEFAULT_EVENT_NAME),
        on_record_error=mode,
        setup_timeout_seconds=_opt_float(section, "setup_timeout_seconds", None),
        retry=_parse_retry(section.get("retry")),
        source=source,
    )


def load_raw_section(path: Union[str, os.PathLike]) -> Dict[str, Any]:
    """Load the 'indexer' subtree and resolve ENV placeholders there."""
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {p}")
    with open(p, "r", encoding="utf-8") as fh:
        try:
            raw = yaml.safe_load(fh) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {p}: {e}") from e
    section = raw.get("indexer") if isinstance(raw, dict) else None
    if not section:
        raise ConfigError("Missing 'indexer' section in config.")
    return _resolve_env(section)


def resolve_config_path(path: Union[str, os.PathLike, None] = None) -> Path:
    # priority: explicit path → $REWARDS_INDEXER_CONFIG → package default
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get(ENV_CONFIG_PATH_VAR, "").strip()
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CFG


def load_indexer_config(path: Union[str, os.PathLike, None] = None, *, dotenv: bool = True) -> IndexerConfig:
    if dotenv:
        load_dotenv()
    cfg_path = resolve_config_path(path)
    return parse_indexer_config(load_raw_section(cfg_path), source=cfg_path)


def pretty(obj: Any) -> str:
    return json.dumps(obj, indent=2, sort_keys=True, default=str)
