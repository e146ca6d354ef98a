from __future__ import annotations

import os
import tempfile
import tomllib
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Callable, Union, get_args, get_origin, get_type_hints

from .config import ProxyConfig

CONFIG_FILE_ENV = "CHAT_PROXY_CONFIG_FILE"
ENV_PREFIX = "CHAT_PROXY_"
DEFAULT_CONFIG_PATH = Path("configs/chat_proxy.toml")

_SECTION_MAP: dict[str, list[str]] = {
    "server": ["host", "port", "mocked_model", "client_key_prefix", "debug"],
    "upstream": ["upstream_endpoint", "referer", "title", "organization"],
    "timeouts": ["backend_timeout_ms", "heartbeat_interval_s"],
    "logging": ["log_path", "max_log_bytes"],
}

_TRUTHY = {"1", "true", "yes", "on"}


def _field_types() -> dict[str, Any]:
    hints = get_type_hints(ProxyConfig)
    return {f.name: hints.get(f.name, f.type) for f in fields(ProxyConfig)}


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def _coerce_int(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, float):
        return int(value)
    return int(str(value).strip())


def _coerce_float(value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return float(str(value).strip())


def _coerce_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


_CASTERS: dict[Any, Callable[[Any], Any]] = {
    bool: _coerce_bool,
    int: _coerce_int,
    float: _coerce_float,
    str: _coerce_str,
}


def _coerce_value(field_type: Any, value: Any) -> Any:
    origin = get_origin(field_type)
    if origin is None:
        caster = _CASTERS.get(field_type)
        return caster(value) if caster else value
    if origin is Union:
        args = [arg for arg in get_args(field_type) if arg is not type(None)]
        if value in ("", None):
            return None
        if len(args) == 1 and args[0] in _CASTERS:
            return _CASTERS[args[0]](value)
    return value


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        data = tomllib.load(fh)

    out: dict[str, Any] = {}
    for section, keys in _SECTION_MAP.items():
        section_values = data.get(section, {})
        if not isinstance(section_values, dict):
            continue
        for key in keys:
            if key in section_values:
                out[key] = section_values[key]
    return out


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Overlay CHAT_PROXY_<FIELD> variables onto ``config``.

    Values that fail to parse for the field's type are ignored so a typo in the
    environment never prevents startup. ``DEBUG=true`` is honoured as an alias
    for ``CHAT_PROXY_DEBUG``.
    """

    env = os.environ
    field_types = _field_types()
    for key in _default_config_dict():
        raw = env.get(f"{ENV_PREFIX}{key.upper()}")
        if raw is None:
            continue
        try:
            config[key] = _coerce_value(field_types[key], raw)
        except ValueError:
            continue
    if env.get("DEBUG", "").strip().lower() in _TRUTHY:
        config["debug"] = True
    return config


def _default_config_dict() -> dict[str, Any]:
    data = asdict(ProxyConfig())
    data.pop("config_file_path", None)
    return data


def _normalize(config: dict[str, Any]) -> dict[str, Any]:
    field_types = _field_types()
    normalized = {}
    for key, default_value in _default_config_dict().items():
        value = config.get(key, default_value)
        try:
            normalized[key] = _coerce_value(field_types[key], value)
        except (TypeError, ValueError):
            normalized[key] = default_value
    return normalized


def _config_path() -> Path:
    return Path(os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_PATH)).expanduser()


def _ensure_config_file(path: Path) -> None:
    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    write_config(ProxyConfig(), path)


def load_file_config() -> dict[str, Any]:
    path = _config_path()
    _ensure_config_file(path)
    base = _default_config_dict()
    base.update(_read_config_file(path))
    return _normalize(base)


def load_proxy_config() -> ProxyConfig:
    path = _config_path()
    _ensure_config_file(path)
    normalized = _normalize(_read_config_file(path))
    normalized = _apply_env_overrides(normalized)
    cfg = ProxyConfig(**normalized)
    cfg.config_file_path = str(path)
    return cfg


def _format_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        inner = ", ".join(_format_value(item) for item in value)
        return f"[{inner}]"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if value is None:
        return '""'
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _ordered_sections(config: ProxyConfig) -> dict[str, dict[str, Any]]:
    config_dict = asdict(config)
    config_dict.pop("config_file_path", None)
    sections: dict[str, dict[str, Any]] = {}
    for section, keys in _SECTION_MAP.items():
        section_values = {key: config_dict[key] for key in keys if key in config_dict}
        if section_values:
            sections[section] = section_values
    return sections


def write_config(config: ProxyConfig, path: Path | None = None) -> None:
    path = Path(path or _config_path()).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        "# routerbridge chat proxy configuration.",
        "# Generated automatically. Edit values as needed.",
    ]
    for section, values in _ordered_sections(config).items():
        lines.append("")
        lines.append(f"[{section}]")
        for key, value in values.items():
            lines.append(f"{key} = {_format_value(value)}")

    tmp_fd, tmp_path = tempfile.mkstemp(
        prefix="chat_proxy_config_", suffix=".toml", dir=path.parent
    )
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write("\n".join(lines) + "\n")
        Path(tmp_path).replace(path)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass


def list_env_overrides() -> dict[str, str]:
    return {
        key: value for key, value in os.environ.items() if key.startswith(ENV_PREFIX)
    }
