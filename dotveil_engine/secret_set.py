"""
Secret set serialization.

A secret set is a flat mapping of variable names to string values. Before
encryption it is serialized to a canonical byte form (sorted-key compact
JSON, UTF-8) so equal sets always produce equal plaintext.
"""

from __future__ import annotations

import io
import json
import re
from typing import Dict, Mapping

from dotenv import dotenv_values

from .errors import SerializationError

SecretSet = Dict[str, str]

MAX_EXPANSION_DEPTH = 5
_VAR_REFERENCE = re.compile(r"\$\{([A-Za-z0-9_]+)\}")


def serialize_secrets(secrets: Mapping[str, str]) -> bytes:
    """
    Canonical byte form of a secret set.

    Raises:
        SerializationError: If a name or value is not a string
    """
    for name, value in secrets.items():
        if not isinstance(name, str) or not isinstance(value, str):
            raise SerializationError("Secret names and values must be strings")
    return json.dumps(
        dict(secrets), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def deserialize_secrets(data: bytes) -> SecretSet:
    """
    Parse the canonical byte form back into a secret set.

    Raises:
        SerializationError: If the bytes are not a JSON object of strings
    """
    try:
        parsed = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SerializationError(f"Secret set is not valid JSON: {e}") from None
    if not isinstance(parsed, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in parsed.items()
    ):
        raise SerializationError("Secret set must be an object of strings")
    return parsed


def parse_env_text(text: str) -> SecretSet:
    """Parse ``.env`` file contents. Bare names without a value map to ""."""
    values = dotenv_values(stream=io.StringIO(text), interpolate=False)
    return {name: (value if value is not None else "") for name, value in values.items()}


def _quote(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def render_env_text(secrets: Mapping[str, str]) -> str:
    """Render a secret set as ``.env`` text that parse_env_text reads back."""
    return "".join(f"{name}={_quote(value)}\n" for name, value in secrets.items())


def expand_secrets(secrets: Mapping[str, str], max_depth: int = MAX_EXPANSION_DEPTH) -> SecretSet:
    """
    Expand ``${NAME}`` references between secrets.

    Unknown references are left as written. Expansion stops after max_depth
    passes per value, so self-referencing values cannot loop forever.
    """
    expanded = dict(secrets)

    def substitute(match: re.Match) -> str:
        return expanded.get(match.group(1), match.group(0))

    for name in list(expanded):
        value = expanded[name]
        depth = 0
        while _VAR_REFERENCE.search(value) and depth < max_depth:
            new_value = _VAR_REFERENCE.sub(substitute, value)
            depth += 1
            if new_value == value:
                break
            value = new_value
        expanded[name] = value

    return expanded
