"""Input parsing utilities for CLI commands."""

import json
from pathlib import Path
from typing import Any


def parse_json_object(value: str, option: str) -> dict[str, Any]:
    """Parse a JSON object given on the command line.

    Args:
        value: JSON text
        option: Name of the argument or option, for error messages

    Returns:
        Parsed object

    Raises:
        ValueError: If the text is not a JSON object
    """
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON for {option}: {e.msg}") from e
    if not isinstance(parsed, dict):
        raise ValueError(f"{option} must be a JSON object, got {type(parsed).__name__}")
    return parsed


def parse_include(values: list[str] | None) -> dict[str, Any]:
    """Turn ``--include`` values into an include spec.

    Dotted paths nest: ``posts.comments`` includes ``posts`` and, within each
    post, ``comments``.

    Examples:
        ["posts"] → {"posts": True}
        ["posts.comments", "profile"] → {"posts": {"include": {"comments": True}}, "profile": True}
    """
    include: dict[str, Any] = {}
    for value in values or []:
        level = include
        parts = [part for part in value.split(".") if part]
        if not parts:
            raise ValueError(f"Invalid include path: '{value}'")
        for i, part in enumerate(parts):
            last = i == len(parts) - 1
            current = level.get(part)
            if last:
                if current is None:
                    level[part] = True
                break
            if not isinstance(current, dict):
                current = {"include": {}}
                level[part] = current
            level = current["include"]
    return include


def read_json_file(path: str) -> dict[str, Any]:
    """Read single JSON object from file.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON object

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If file does not contain a JSON object
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    with file_path.open("r") as f:
        return parse_json_object(f.read(), path)
