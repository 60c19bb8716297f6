"""
YAML settings for the importer.
"""
from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from wdb_importer.exceptions import ConfigError


@dataclass(frozen=True)
class ImporterSettings:
    """Settings shared by the command line and library callers."""
    database: str = "wdb.sqlite3"
    language: str = "und"
    operator: str = "importer"
    chunk_size: int = 50
    delimiter: str | None = None

    def override(self, **values: Any) -> ImporterSettings:
        """Return a copy with every non-None value applied."""
        changes = {k: v for k, v in values.items() if v is not None}
        return _validate(replace(self, **changes))


_TYPES: dict[str, tuple] = {
    "database": (str,),
    "language": (str,),
    "operator": (str,),
    "chunk_size": (int,),
    "delimiter": (str, type(None)),
}


def load_settings(
    source: str | Path | dict[str, Any] | None = None,
) -> ImporterSettings:
    """Load settings from a YAML file, a dictionary, or defaults.

    Args:
        source: Path to a YAML file, a parsed dictionary, or None for
            the defaults

    Returns:
        ImporterSettings object

    Raises:
        ConfigError: If the file is missing, unparsable, or holds unknown
            keys or wrongly typed values
    """
    if source is None:
        return ImporterSettings()
    if isinstance(source, dict):
        data = source
    else:
        data = _load_yaml_file(Path(source))
    return _parse_settings(data)


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """Load YAML from a file."""
    if not path.exists():
        raise ConfigError(f"Settings file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        where = f" (line {mark.line + 1})" if mark else ""
        raise ConfigError(f"Invalid YAML in {path}{where}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("YAML root must be a mapping (dictionary)")
    return data


def _parse_settings(data: dict[str, Any]) -> ImporterSettings:
    """Parse a dictionary into an ImporterSettings object."""
    known = {f.name for f in fields(ImporterSettings)}
    unknown = sorted(str(k) for k in data if k not in known)
    if unknown:
        raise ConfigError(f"Unknown setting(s): {', '.join(unknown)}")
    return _validate(ImporterSettings(**data))


def _validate(settings: ImporterSettings) -> ImporterSettings:
    for name, types in _TYPES.items():
        value = getattr(settings, name)
        # bool is an int subclass
        if isinstance(value, bool) or not isinstance(value, types):
            raise ConfigError(
                f"Setting '{name}' has invalid value {value!r}"
            )
    if settings.chunk_size < 1:
        raise ConfigError("Setting 'chunk_size' must be at least 1")
    if settings.delimiter is not None and len(settings.delimiter) != 1:
        raise ConfigError("Setting 'delimiter' must be a single character")
    if not settings.language.strip():
        raise ConfigError("Setting 'language' must not be empty")
    return settings
