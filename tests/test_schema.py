from __future__ import annotations

import pytest

from modalbind.models import CompileOptions, ConfigError, KindSpec
from modalbind.schema import (
    parse_command,
    parse_default_entry,
    parse_header,
    parse_mode,
    parse_specification,
    validate_binding,
)

OPTIONS = CompileOptions(namespace="master-key")


def _validate(raw: dict, problems: list[str] | None = None, **kwargs):
    return validate_binding(
        raw, index=0, label="bind[0]", options=OPTIONS, problems=problems, **kwargs
    )


def test_header_requires_version_two() -> None:
    header = parse_header({"version": "2.0", "name": "vim", "requiredExtensions": "x.y"})
    assert header.name == "vim"
    assert header.required_extensions == ("x.y",)
    with pytest.raises(ConfigError, match="header.version is required"):
        parse_header({"name": "vim"})
    with pytest.raises(ConfigError, match="unsupported version '3.1'"):
        parse_header({"version": "3.1"})
    with pytest.raises(ConfigError, match="header must be a mapping"):
        parse_header(None)


def test_binding_is_normalized() -> None:
    item = _validate(
        {
            "key": "Ctrl+a  b",
            "command": "cursorMove",
            "args": {"to": "left"},
            "when": "editorTextFocus",
            "mode": "normal",
            "priority": 2,
            "name": "left",
        }
    )
    assert item.key == "ctrl+a b"
    assert item.commands == [{"command": "cursorMove", "args": {"to": "left"}}]
    assert [guard.text for guard in item.when] == ["editorTextFocus"]
    assert item.mode == ("normal",)
    assert item.priority == 2
    assert item.final_key is True
    assert item.docs == {"name": "left"}


def test_run_commands_are_unpacked() -> None:
    item = _validate(
        {
            "key": "x",
            "command": "runCommands",
            "args": {"commands": ["a", {"command": "b", "args": {"n": 1}}]},
        }
    )
    assert item.commands == [{"command": "a"}, {"command": "b", "args": {"n": 1}}]


def test_invalid_fields_are_rejected() -> None:
    with pytest.raises(ConfigError, match="invalid keybinding"):
        _validate({"key": "hyper+x", "command": "c"})
    with pytest.raises(ConfigError, match="unknown fields"):
        _validate({"key": "x", "command": "c", "bogus": 1})
    with pytest.raises(ConfigError, match="priority must be a number"):
        _validate({"key": "x", "command": "c", "priority": "high"})
    with pytest.raises(ConfigError, match="at most one input-capturing command"):
        _validate(
            {
                "key": "x",
                "command": "runCommands",
                "args": {"commands": ["master-key.captureKeys", "master-key.search"]},
            }
        )


def test_prefix_commands_are_never_final() -> None:
    problems: list[str] = []
    item = _validate({"key": "g", "command": "master-key.prefix", "finalKey": True}, problems)
    assert item.final_key is False
    assert len(problems) == 1
    assert "'finalKey' must be false" in problems[0]


def test_undeclared_kind_is_a_problem() -> None:
    problems: list[str] = []
    _validate(
        {"key": "x", "command": "c", "kind": "mystery"},
        problems,
        kinds=(KindSpec(name="motion"),),
    )
    assert problems == ["bind[0].kind: 'mystery' is not a declared kind"]


def test_all_prefixes_sentinel_lifts_prefix_restriction() -> None:
    item = _validate({"key": "x", "command": "c", "prefixes": "{{all_prefixes}}"})
    assert item.prefixes == ()
    item = _validate({"key": "x", "command": "c", "prefixes": ["", "g"]})
    assert item.prefixes == ("", "g")


def test_unresolved_defined_command_is_rejected() -> None:
    with pytest.raises(ConfigError, match="unresolved reference"):
        parse_command({"defined": "save"}, label="cmd")


def test_mode_and_default_entries() -> None:
    mode = parse_mode(
        {"name": "insert", "highlight": "Alert", "cursorShape": "Block", "onType": "typeText"},
        label="mode[0]",
    )
    assert mode.highlight == "Alert"
    assert mode.cursor_shape == "Block"
    assert mode.on_type == ({"command": "typeText"},)
    with pytest.raises(ConfigError, match="highlight must be one of"):
        parse_mode({"name": "x", "highlight": "Neon"}, label="mode[0]")

    entry = parse_default_entry(
        {"id": "edit.motion", "default": {"mode": "normal"}, "appendWhen": "focus"},
        label="default[0]",
    )
    assert entry.append_when == ("focus",)
    with pytest.raises(ConfigError, match="must be dot-separated"):
        parse_default_entry({"id": "bad id", "default": {}}, label="default[0]")


def test_specification_collects_entry_problems() -> None:
    problems: list[str] = []
    spec = parse_specification(
        {
            "header": {"version": "2.0"},
            "mode": [{"name": "normal", "default": True}, {"nope": 1}],
            "kind": [{"name": "motion"}, {"name": "motion"}],
            "extra": 1,
            "bind": [{"key": "a", "command": "c"}],
        },
        problems,
    )
    assert [mode.name for mode in spec.modes] == ["normal"]
    assert [kind.name for kind in spec.kinds] == ["motion"]
    assert spec.modes[0].default is True
    assert len(spec.bind) == 1
    assert problems[0] == "document has unknown top-level fields: ['extra']"
    assert any("mode[1]" in problem for problem in problems)
    assert "kind[1]: duplicate kind 'motion'" in problems
