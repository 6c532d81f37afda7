"""Configuration loader with type-safe dataclasses.

Values are merged from, lowest precedence first: built-in defaults, an optional
YAML file, URIWATCH_* environment variables and command-line flags.
"""

import math
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .models import DEFAULT_WINDOWS, Window


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


DEFAULT_INTERVAL_SECONDS = 30
DEFAULT_TIMEOUT_SECONDS = 15
DEFAULT_LATENCY_SLO_MS = 1000

# Prune the log every N probe cycles.
DEFAULT_PRUNE_EVERY = 50

# History kept beyond the longest window when pruning.
DEFAULT_RETENTION_MARGIN_SECONDS = 3600


def _get_default_log_dir() -> Path:
    """Get the default log directory (~/.local/share/uriwatch/logs)."""
    return Path.home() / ".local" / "share" / "uriwatch" / "logs"


DEFAULT_LOG_DIR = _get_default_log_dir()


def sanitize_for_filename(raw: str) -> str:
    """Turn a URI into a safe file name stem.

    Every run of characters outside [A-Za-z0-9_.-] collapses into a single
    underscore, e.g. "https://example.com/health" -> "https_example.com_health".
    """
    out = re.sub(r"[^A-Za-z0-9_.-]+", "_", raw)
    out = re.sub(r"_+", "_", out)
    return out or "target"


def default_log_path(uri: str) -> str:
    """Default event log location for a target URI."""
    return str(DEFAULT_LOG_DIR / f"{sanitize_for_filename(uri)}.csv")


def parse_header(raw: str) -> tuple[str, str]:
    """Parse a "Name: Value" header string.

    Raises:
        ConfigError: If the string has no colon or an empty name.
    """
    name, sep, value = raw.partition(":")
    name = name.strip()
    if not sep or not name:
        raise ConfigError(f"Invalid header '{raw}' (expected 'Name: Value')")
    if any(c.isspace() for c in name):
        raise ConfigError(f"Invalid header name '{name}'")
    return name, value.strip()


def _to_number(value: object, option: str) -> float:
    """Coerce a config value to a finite float, rejecting booleans and junk."""
    if isinstance(value, bool):
        raise ConfigError(f"{option} must be numeric")
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ConfigError(f"{option} must be numeric (got {value!r})")
    if not math.isfinite(number):
        raise ConfigError(f"{option} must be numeric (got {value!r})")
    return number


def _to_int(value: object, option: str) -> int:
    number = _to_number(value, option)
    if not number.is_integer():
        raise ConfigError(f"{option} must be a whole number (got {value!r})")
    return int(number)


def _to_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


@dataclass(frozen=True)
class WatchConfig:
    """Configuration for one monitor instance.

    log_file defaults to a path derived from the sanitized target URI.
    """

    uri: str = ""
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    latency_slo_ms: float = DEFAULT_LATENCY_SLO_MS
    log_file: str = ""
    headers: tuple[tuple[str, str], ...] = ()
    clear_screen: bool = True
    prune_every: int = DEFAULT_PRUNE_EVERY
    retention_margin_seconds: int = DEFAULT_RETENTION_MARGIN_SECONDS
    fixed_rate: bool = False
    incremental: bool = False
    windows: tuple[Window, ...] = field(default=DEFAULT_WINDOWS)

    def __post_init__(self) -> None:
        if not self.uri and not self.log_file:
            raise ConfigError("A target URI (--uri) is required")
        if self.uri and not self.uri.startswith(("http://", "https://")):
            raise ConfigError(f"URI must start with http:// or https:// (got '{self.uri}')")
        if self.interval_seconds <= 0:
            raise ConfigError(f"Interval must be positive (got {self.interval_seconds})")
        if self.timeout_seconds <= 0:
            raise ConfigError(f"Timeout must be positive (got {self.timeout_seconds})")
        if self.latency_slo_ms <= 0:
            raise ConfigError(f"Latency SLO must be positive (got {self.latency_slo_ms})")
        if self.prune_every < 1:
            raise ConfigError(f"prune_every must be at least 1 (got {self.prune_every})")
        if self.retention_margin_seconds < 0:
            raise ConfigError(
                f"retention_margin_seconds must be non-negative (got {self.retention_margin_seconds})"
            )
        if not self.windows:
            raise ConfigError("At least one window must be configured")
        labels = [w.label for w in self.windows]
        duplicates = {label for label in labels if labels.count(label) > 1}
        if duplicates:
            raise ConfigError(f"Duplicate window labels found: {duplicates}")
        for window in self.windows:
            if not window.label:
                raise ConfigError("Window label cannot be empty")
            if window.duration_seconds < 1:
                raise ConfigError(f"Window '{window.label}' must last at least 1 second")
        if not self.log_file:
            object.__setattr__(self, "log_file", default_log_path(self.uri))

    @property
    def longest_window_seconds(self) -> int:
        return max(w.duration_seconds for w in self.windows)

    @property
    def retention_seconds(self) -> int:
        """History kept by pruning: longest window plus the retention margin."""
        return self.longest_window_seconds + self.retention_margin_seconds

    @property
    def header_dict(self) -> dict[str, str]:
        return dict(self.headers)


def _parse_headers(data: object) -> list[tuple[str, str]]:
    """Parse headers given as a list of "Name: Value" strings or a mapping."""
    if data is None:
        return []
    if isinstance(data, dict):
        return [(str(name), str(value)) for name, value in data.items()]
    if isinstance(data, list):
        return [parse_header(str(item)) for item in data]
    raise ConfigError("'headers' must be a list or a dictionary")


def _parse_windows(data: object) -> tuple[Window, ...]:
    """Parse the windows section: a list of {label, seconds} entries."""
    if not isinstance(data, list):
        raise ConfigError("'windows' must be a list")

    windows: list[Window] = []
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise ConfigError(f"Window entry {index} must be a dictionary")
        label = entry.get("label")
        seconds = entry.get("seconds")
        if label is None:
            raise ConfigError(f"Window entry {index} is missing 'label' field")
        if seconds is None:
            raise ConfigError(f"Window entry {index} is missing 'seconds' field")
        windows.append(Window(str(label), _to_int(seconds, f"windows[{index}].seconds")))
    return tuple(windows)


def load_file(config_path: str) -> dict:
    """Load raw settings from a YAML configuration file.

    Raises:
        ConfigError: If the file cannot be read or is not a YAML dictionary.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file: {e}")

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a YAML dictionary")

    return data


# Environment variable -> config key
_ENV_OVERRIDES = {
    "URIWATCH_URI": "uri",
    "URIWATCH_INTERVAL_SECONDS": "interval_seconds",
    "URIWATCH_TIMEOUT_SECONDS": "timeout_seconds",
    "URIWATCH_LATENCY_SLO_MS": "latency_slo_ms",
    "URIWATCH_LOG_FILE": "log_file",
    "URIWATCH_PRUNE_EVERY": "prune_every",
}


def _apply_env_overrides(config_data: dict) -> dict:
    """Apply URIWATCH_* environment variable overrides to raw settings."""
    for env_name, key in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value is not None:
            config_data[key] = value
    return config_data


def _from_mapping(data: dict) -> WatchConfig:
    """Build a validated WatchConfig from merged raw settings."""
    kwargs: dict = {}

    if data.get("uri") is not None:
        kwargs["uri"] = str(data["uri"]).strip()
    if data.get("log_file") is not None:
        kwargs["log_file"] = os.path.expanduser(str(data["log_file"]))

    for key, option in (
        ("interval_seconds", "--interval"),
        ("timeout_seconds", "--timeout"),
        ("latency_slo_ms", "--latency-slo-ms"),
    ):
        if data.get(key) is not None:
            kwargs[key] = _to_number(data[key], option)

    for key in ("prune_every", "retention_margin_seconds"):
        if data.get(key) is not None:
            kwargs[key] = _to_int(data[key], key)

    for key in ("clear_screen", "fixed_rate", "incremental"):
        if data.get(key) is not None:
            kwargs[key] = _to_bool(data[key])

    kwargs["headers"] = tuple(_parse_headers(data.get("headers")))

    if data.get("windows") is not None:
        kwargs["windows"] = _parse_windows(data["windows"])

    return WatchConfig(**kwargs)


def build_config(
    config_path: str | None = None,
    overrides: dict | None = None,
    extra_headers: list[str] | None = None,
) -> WatchConfig:
    """Merge file, environment and command-line settings into a WatchConfig.

    Args:
        config_path: Optional YAML file with base settings.
        overrides: Command-line values; None entries are ignored.
        extra_headers: "Name: Value" strings appended to any configured headers.

    Raises:
        ConfigError: If any source is unreadable or the merged settings are invalid.
    """
    data = load_file(config_path) if config_path else {}
    data = _apply_env_overrides(data)

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    if extra_headers:
        headers = _parse_headers(data.get("headers"))
        headers.extend(parse_header(raw) for raw in extra_headers)
        data["headers"] = [f"{name}: {value}" for name, value in headers]

    return _from_mapping(data)
