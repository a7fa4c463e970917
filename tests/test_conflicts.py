from __future__ import annotations

from modalbind.models import BindingItem, CompileOptions, ParsedWhen
from modalbind.passes.conflicts import (
    CONFLICT_RULES,
    KEEP,
    REPLACE,
    BindingTable,
    decide_conflict,
    resolve,
)

OPTIONS = CompileOptions(namespace="master-key")


def _item(
    command: str = "c",
    *,
    index: int = 0,
    args: dict | None = None,
    implicit: bool = False,
    when: tuple[str, ...] = (),
) -> BindingItem:
    entry: dict = {"command": command}
    if args is not None:
        entry["args"] = args
    return BindingItem(
        key="a",
        commands=[entry],
        index=index,
        mode=("normal",),
        implicit_mode=implicit,
        when=tuple(ParsedWhen.from_text(text) for text in when),
    )


def test_rules_run_in_documented_order() -> None:
    assert [rule.name for rule in CONFLICT_RULES] == [
        "identical",
        "ignore_loses",
        "manual_prefix_wins",
        "explicit_mode_wins",
    ]


def test_identical_bindings_collapse() -> None:
    assert decide_conflict(_item(), _item(), OPTIONS) == (KEEP, "identical")


def test_ignore_binding_always_loses() -> None:
    ignore = _item("master-key.ignore")
    assert decide_conflict(_item(), ignore, OPTIONS) == (KEEP, "ignore_loses")
    assert decide_conflict(ignore, _item(), OPTIONS) == (REPLACE, "ignore_loses")


def test_manual_prefix_beats_automated_in_either_order() -> None:
    automated = _item("master-key.prefix", args={"code": 1, "automated": True})
    manual = _item("master-key.prefix", args={"code": 1, "automated": False})
    assert decide_conflict(automated, manual, OPTIONS) == (REPLACE, "manual_prefix_wins")
    assert decide_conflict(manual, automated, OPTIONS) == (KEEP, "manual_prefix_wins")


def test_explicit_mode_beats_implicit_fallback() -> None:
    explicit = _item("explicit")
    implicit = _item("implicit", implicit=True)
    assert decide_conflict(explicit, implicit, OPTIONS) == (KEEP, "explicit_mode_wins")
    assert decide_conflict(implicit, explicit, OPTIONS) == (REPLACE, "explicit_mode_wins")


def test_genuine_duplicate_keeps_later_binding_and_reports_once() -> None:
    problems: list[str] = []
    first = _item("first", index=0)
    second = _item("second", index=1)
    assert decide_conflict(first, second, OPTIONS) == (REPLACE, None)

    resolved = resolve([first, second], problems, OPTIONS)
    assert resolved == [second]
    assert problems == ["Duplicate bindings for 'a' in mode 'normal'"]


def test_guard_order_does_not_change_fingerprint() -> None:
    left = _item("x", when=("a", "b"))
    right = _item("y", when=("b", "a"))
    assert left.fingerprint() == right.fingerprint()
    assert _item("x", when=("a",)).fingerprint() != left.fingerprint()


def test_table_counts_outcomes_and_orders_by_position() -> None:
    problems: list[str] = []
    counters: dict[str, int] = {}
    table = BindingTable(OPTIONS, problems, counters)
    other = BindingItem(key="b", commands=[{"command": "c"}], index=0, mode=("normal",))
    table.add(_item("late", index=5), index=5)
    table.add(other, index=0)
    table.add(_item("master-key.ignore", index=6), index=6)
    assert [item.key for item in table.bindings()] == ["b", "a"]
    assert counters == {"ignore_loses": 1}
    assert problems == []
    assert len(table) == 2
