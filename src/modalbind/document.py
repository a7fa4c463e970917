"""Reading binding documents from disk.

The compiler itself works on in-memory mappings; this module is the
boundary where text in one of the supported formats becomes such a mapping.
"""

from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import Any, Mapping

import yaml

from modalbind.models import ConfigError

FORMATS = {".toml": "toml", ".yaml": "yaml", ".yml": "yaml", ".json": "json"}


def detect_format(path: str | Path) -> str:
    fmt = FORMATS.get(Path(path).suffix.lower())
    if fmt is None:
        raise ConfigError(
            f"{path}: unsupported binding file type (expected one of {sorted(FORMATS)})"
        )
    return fmt


def parse_document(text: str, *, fmt: str, source: str = "<text>") -> Mapping[str, Any]:
    try:
        if fmt == "toml":
            data: Any = tomllib.loads(text)
        elif fmt == "yaml":
            data = yaml.safe_load(text)
        elif fmt == "json":
            data = json.loads(text)
        else:
            raise ConfigError(f"{source}: unknown document format '{fmt}'")
    except (tomllib.TOMLDecodeError, yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigError(f"{source}: could not parse {fmt}: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"{source}: top level must be a mapping")
    return data


def read_document(path: str | Path) -> tuple[Mapping[str, Any], str]:
    """Return the parsed document at *path* together with its raw text."""
    doc_path = Path(path)
    text = doc_path.read_text(encoding="utf-8")
    return parse_document(text, fmt=detect_format(doc_path), source=str(doc_path)), text
