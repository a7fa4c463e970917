from __future__ import annotations

from pathlib import Path

import pytest

from modalbind.document import detect_format, parse_document, read_document
from modalbind.models import ConfigError


def test_detect_format_by_suffix() -> None:
    assert detect_format("a.toml") == "toml"
    assert detect_format("a.YML") == "yaml"
    assert detect_format(Path("dir/a.json")) == "json"
    with pytest.raises(ConfigError, match="unsupported binding file type"):
        detect_format("a.txt")


def test_parse_errors_become_config_errors() -> None:
    with pytest.raises(ConfigError, match="could not parse toml"):
        parse_document("[header", fmt="toml")
    with pytest.raises(ConfigError, match="could not parse json"):
        parse_document("{", fmt="json")
    with pytest.raises(ConfigError, match="top level must be a mapping"):
        parse_document("- 1\n- 2\n", fmt="yaml")


def test_empty_yaml_is_an_empty_document() -> None:
    assert parse_document("", fmt="yaml") == {}


def test_read_document_returns_text(tmp_path: Path) -> None:
    path = tmp_path / "keys.toml"
    path.write_text('[header]\nversion = "2.0"\n', encoding="utf-8")
    document, text = read_document(path)
    assert document == {"header": {"version": "2.0"}}
    assert text == '[header]\nversion = "2.0"\n'
