"""Load, merge and save the tokentop ``config.json``.

* Missing file: defaults
* Partial file: deep-merged over the defaults
* Invalid JSON: defaults with a warning (or :class:`ConfigError` when strict)
* Save: atomic, pretty-printed JSON
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from .schema import AppConfig

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """The config file could not be used.

    Attributes:
        path: The offending file.
    """

    def __init__(self, path: Path, reason: str):
        self.path = path
        super().__init__(f"Invalid config at {path}: {reason}")


def default_config_dict() -> dict[str, Any]:
    return AppConfig().model_dump(mode="json", by_alias=True)


def merge_with_defaults(partial: dict[str, Any]) -> AppConfig:
    """Deep-merge *partial* over the default config and validate.

    Nested sections keep their default siblings; lists are replaced
    wholesale.

    Raises:
        pydantic.ValidationError: If the merged document is invalid.
    """
    base = default_config_dict()
    merged = _deep_merge(base, _camelize_keys(partial, base))
    return AppConfig.model_validate(merged)


def load_config(path: str | Path, strict: bool = False) -> AppConfig:
    """Load ``config.json`` from *path*.

    Args:
        path: Config file location (``~`` allowed).
        strict: Raise :class:`ConfigError` on unreadable JSON instead of
            falling back to defaults.

    Raises:
        ConfigError: The JSON is malformed (strict only) or the content
            fails validation.
    """
    path = Path(path).expanduser()
    if not path.exists():
        logger.debug(f"No config file at {path}, using defaults")
        return AppConfig()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        if strict:
            raise ConfigError(path, f"malformed JSON ({e})") from e
        logger.warning(f"Ignoring malformed config at {path}: {e}")
        return AppConfig()

    if not isinstance(raw, dict):
        raise ConfigError(path, "top level must be a JSON object")

    try:
        return merge_with_defaults(raw)
    except ValidationError as e:
        raise ConfigError(path, str(e)) from e


def save_config(config: AppConfig, path: str | Path) -> None:
    """Atomically write *config* to *path*.

    Writes to a sibling temporary file first, then renames it into place.
    """
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    data = config.model_dump(mode="json", by_alias=True)
    tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    tmp.replace(path)
    logger.info(f"Saved config to {path}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _camelize_keys(partial: dict[str, Any], base: dict[str, Any]) -> dict[str, Any]:
    """Rename snake_case keys to the camelCase keys used in *base*.

    Only keys that exist in *base* are renamed; free-form sections such as
    ``notifications`` pass through untouched.
    """
    result: dict[str, Any] = {}
    for key, value in partial.items():
        camel = to_camel(key)
        target = camel if camel in base and key not in base else key
        if isinstance(value, dict) and isinstance(base.get(target), dict) and target != "notifications":
            value = _camelize_keys(value, base[target])
        result[target] = value
    return result


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *override* into *base*. Lists are replaced, not appended."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result
