"""
TOML-only IO for policy configuration and metrics snapshots.

Constraints:
- Reading: use tomllib
- Writing: minimal serializer for the value types our configs produce
- Deterministic output ordering
- Malformed content surfaces as ConfigurationError
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import TypeGuard, cast

from errors import ConfigurationError

type TomlScalar = str | int | float | bool
type TomlValue = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
type TomlRawValue = (
    str | int | float | bool | list["TomlRawValue"] | dict[str, "TomlRawValue"]
)
type TomlRawTable = dict[str, TomlRawValue]


def load_toml(path: Path) -> dict[str, TomlValue]:
    """Load a TOML file into a strictly-typed nested dictionary.

    Args:
        path: Path to TOML file.

    Returns:
        Parsed TOML as nested dict[str, TomlValue].

    Raises:
        FileNotFoundError: If path does not exist.
        ConfigurationError: If the file is not valid TOML or holds
            unsupported value types.
    """
    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"{path}: invalid TOML ({exc})") from exc
    return parse_toml_table(cast(TomlRawTable, raw))


def parse_toml_table(raw: TomlRawTable) -> dict[str, TomlValue]:
    """Validate an already-decoded TOML table."""
    if not _is_str_key_dict(raw):
        raise ConfigurationError("TOML root must be a table with string keys.")
    return _validate_toml_dict(raw)


def dump_toml(data: dict[str, TomlValue]) -> str:
    """Serialize a TOML dictionary deterministically.

    Scalars of a table are emitted before its subtables, each group sorted
    by key.
    """
    return _dumps_table(data, prefix="")


def save_toml(path: Path, data: dict[str, TomlValue]) -> None:
    """Write TOML to disk with stable ordering."""
    path.write_text(dump_toml(data), encoding="utf-8")


def _is_str_key_dict(value: TomlRawValue) -> TypeGuard[TomlRawTable]:
    """Check whether a value is a dict with string keys."""
    return isinstance(value, dict) and all(
        isinstance(key, str) for key in value
    )


def _validate_toml_dict(raw: TomlRawTable) -> dict[str, TomlValue]:
    """Validate TOML data without leaking `object` to callers."""
    validated: dict[str, TomlValue] = {}
    for key, value in raw.items():
        if _is_str_key_dict(value):
            validated[key] = _validate_toml_dict(value)
            continue
        validated[key] = _validate_toml_value(value)
    return validated


def _validate_toml_value(value: TomlRawValue) -> TomlValue:
    """Validate a TOML value against allowed types.

    Raises:
        ConfigurationError: If the value is an unsupported type.
    """
    if isinstance(value, str | int | float | bool):
        return value

    # Arrays of tables are not used by any config section.
    if isinstance(value, list):
        validated_list: list[TomlValue] = []
        for item in value:
            if isinstance(item, dict):
                raise ConfigurationError(
                    "tables inside arrays are not supported"
                )
            validated_list.append(_validate_toml_value(item))
        return validated_list

    raise ConfigurationError(f"unsupported TOML value type: {type(value)}")


def _dumps_table(table: dict[str, TomlValue], prefix: str) -> str:
    """Dump a TOML table and nested subtables with deterministic ordering."""
    scalar_items = {k: v for k, v in table.items() if not isinstance(v, dict)}
    table_items = {k: v for k, v in table.items() if isinstance(v, dict)}

    lines: list[str] = []
    if prefix:
        lines.append(f"[{prefix}]")

    for key in sorted(scalar_items):
        lines.append(f"{key} = {_format_value(scalar_items[key])}")

    for key in sorted(table_items):
        if lines:
            lines.append("")
        next_prefix = f"{prefix}.{key}" if prefix else key
        rendered = _dumps_table(table_items[key], prefix=next_prefix)
        lines.append(rendered.rstrip("\n"))

    return "\n".join(lines) + "\n"


def _format_value(value: TomlValue) -> str:
    """Format a TOML value into its literal representation."""
    # Booleans first so ints don't swallow them.
    if isinstance(value, bool):
        return "true" if value else "false"

    if isinstance(value, int | float):
        return repr(value)

    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'

    if isinstance(value, list):
        rendered = ", ".join(_format_value(item) for item in value)
        return f"[{rendered}]"

    raise ConfigurationError("unsupported TOML value type")
