from __future__ import annotations

from modalbind.legacy import (
    ALL_PREFIXES_SENTINEL,
    LEGACY_RULES,
    LegacyRule,
    coerce_version,
    double_braces,
    is_legacy,
    upgrade,
    upgrade_command_args,
)


def _legacy_document() -> dict:
    return {
        "header": {"version": "1.0", "name": "old"},
        "path": [{"id": "motion", "when": "editorTextFocus", "default": {"mode": "normal"}}],
        "bind": [
            {
                "key": "{key}",
                "path": "motion",
                "command": "cursorMove",
                "args": {"to": "{key}"},
                "foreach": {"key": ["h", "{key: [jk]}"]},
                "resetTransient": False,
                "repeat": "count",
                "if": "count > 0",
                "prefixes": "<all-prefixes>",
            },
            {
                "key": "q",
                "command": "master-key.storeNamed",
                "args": {"description": "store {n}", "name": "{reg}"},
            },
        ],
    }


def test_coerce_version_reads_partial_versions() -> None:
    assert coerce_version("1") == (1, 0, 0)
    assert coerce_version("2.0") == (2, 0, 0)
    assert coerce_version("v1.2.3") == (1, 2, 3)
    assert coerce_version("latest") is None


def test_is_legacy_only_for_major_version_one() -> None:
    assert is_legacy({"header": {"version": "1.0"}})
    assert not is_legacy({"header": {"version": "2.0"}})
    assert not is_legacy({"header": "1.0"})
    assert not is_legacy([])


def test_upgrade_renames_and_rewrites_fields() -> None:
    upgraded = upgrade(_legacy_document())

    assert upgraded["header"] == {"version": "2.0", "name": "old"}
    assert "path" not in upgraded
    assert upgraded["default"] == [
        {"id": "motion", "appendWhen": "editorTextFocus", "default": {"mode": "normal"}}
    ]

    first = upgraded["bind"][0]
    assert first["defaults"] == "motion"
    assert first["finalKey"] is False
    assert first["computedRepeat"] == "count"
    assert first["whenComputed"] == "count > 0"
    assert first["prefixes"] == ALL_PREFIXES_SENTINEL
    assert first["foreach"] == {"key": ["h", "{{key: [jk]}}"]}
    assert first["args"] == {"to": "{{key}}"}
    for legacy_field in ("path", "resetTransient", "repeat", "if"):
        assert legacy_field not in first


def test_upgrade_reshapes_named_register_arguments() -> None:
    upgraded = upgrade(_legacy_document())
    assert upgraded["bind"][1]["args"] == {
        "description": "store {{n}}",
        "register": "{{reg}}",
    }


def test_upgrade_passes_current_documents_through() -> None:
    document = {"header": {"version": "2.0"}, "bind": [{"key": "{x}", "path": "a"}]}
    upgraded = upgrade(document)
    assert upgraded == document
    assert upgraded is not document


def test_upgrade_does_not_mutate_input() -> None:
    document = _legacy_document()
    upgrade(document)
    assert document == _legacy_document()


def test_history_commands_rename_range_fields() -> None:
    assert upgrade_command_args(
        "master-key.replayFromStack", {"at": "i", "range": "[0, {n}]"}
    ) == {"whereComputedIndexIs": "i", "whereComputedRangeIs": "[0, {{n}}]"}


def test_run_commands_arguments_are_upgraded_per_entry() -> None:
    args = {
        "commands": [
            "cursorUp",
            {"command": "master-key.restoreNamed", "args": {"name": "r", "description": "d"}},
        ]
    }
    upgraded = upgrade_command_args("runCommands", args)
    assert upgraded["commands"][0] == "cursorUp"
    assert upgraded["commands"][1]["args"] == {"description": "d", "register": "r"}


def test_double_braces_leaves_existing_templates_alone() -> None:
    assert double_braces("{a} and {{b}}") == "{{a}} and {{b}}"


def test_rules_are_checked_in_isolation() -> None:
    rule = LegacyRule(("bind", 0, "x"), rename="y")
    assert rule.matches(("bind", 0, "x"))
    assert not rule.matches(("bind", 1, "x"))
    assert any(rule.rename == "whenComputed" for rule in LEGACY_RULES)
    custom = (LegacyRule(("header", "version"), rewrite=lambda v, p, r: "2.0"),)
    upgraded = upgrade({"header": {"version": "1"}, "bind": [{"if": "x"}]}, rules=custom)
    assert upgraded == {"header": {"version": "2.0"}, "bind": [{"if": "x"}]}
