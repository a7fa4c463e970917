"""Collapse bindings that share a fingerprint.

Two bindings collide when they have the same key, mode, guard ids and
prefixes. :data:`CONFLICT_RULES` is consulted top to bottom and the first
rule with an opinion decides whether the binding already in the table is
kept or replaced. A collision no rule settles is a genuine duplicate: it is
reported and the later binding wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from modalbind._logging import get_logger
from modalbind.models import BindingItem, CompileOptions

_log = get_logger("passes.conflicts")

KEEP = "keep"
REPLACE = "replace"

Position = tuple[int, int, int]
Decision = Callable[[BindingItem, BindingItem, CompileOptions], "str | None"]


def _is_automated_prefix(item: BindingItem, options: CompileOptions) -> bool:
    if not item.only_runs(options.prefix_command):
        return False
    return bool((item.commands[0].get("args") or {}).get("automated"))


def _is_manual_prefix(item: BindingItem, options: CompileOptions) -> bool:
    if item.find_command(options.prefix_command) is None:
        return False
    return not _is_automated_prefix(item, options)


def _identical(
    existing: BindingItem, new: BindingItem, options: CompileOptions
) -> str | None:
    return KEEP if existing.content() == new.content() else None


def _ignore_loses(
    existing: BindingItem, new: BindingItem, options: CompileOptions
) -> str | None:
    if new.only_runs(options.ignore_command):
        return KEEP
    if existing.only_runs(options.ignore_command):
        return REPLACE
    return None


def _manual_prefix_wins(
    existing: BindingItem, new: BindingItem, options: CompileOptions
) -> str | None:
    if _is_automated_prefix(existing, options) and _is_manual_prefix(new, options):
        return REPLACE
    if _is_automated_prefix(new, options) and _is_manual_prefix(existing, options):
        return KEEP
    return None


def _explicit_mode_wins(
    existing: BindingItem, new: BindingItem, options: CompileOptions
) -> str | None:
    if new.implicit_mode:
        return KEEP
    if existing.implicit_mode:
        return REPLACE
    return None


@dataclass(frozen=True)
class ConflictRule:
    name: str
    decide: Decision


CONFLICT_RULES: tuple[ConflictRule, ...] = (
    ConflictRule("identical", _identical),
    ConflictRule("ignore_loses", _ignore_loses),
    ConflictRule("manual_prefix_wins", _manual_prefix_wins),
    ConflictRule("explicit_mode_wins", _explicit_mode_wins),
)


def decide_conflict(
    existing: BindingItem, new: BindingItem, options: CompileOptions
) -> tuple[str, str | None]:
    """Return ``(action, rule_name)``; ``rule_name`` is None for a duplicate."""
    for rule in CONFLICT_RULES:
        action = rule.decide(existing, new, options)
        if action is not None:
            return action, rule.name
    return REPLACE, None


def duplicate_message(item: BindingItem) -> str:
    binding = item.key
    if item.prefixes and all(item.prefixes):
        binding = f"{item.prefixes[0]} {binding}"
    if "'" in binding:
        quoted = f"`{binding}`" if "`" not in binding else binding
    else:
        quoted = f"'{binding}'"
    return f"Duplicate bindings for {quoted} in mode '{item.mode_name}'"


class BindingTable:
    """Bindings keyed by fingerprint, each remembering where it sorts."""

    def __init__(
        self,
        options: CompileOptions,
        problems: list[str],
        counters: dict[str, int] | None = None,
    ) -> None:
        self.options = options
        self.problems = problems
        self.counters = counters if counters is not None else {}
        self._entries: dict[str, tuple[Position, BindingItem]] = {}
        self._sequence = 0

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, item: BindingItem, *, index: int, rank: int = 0) -> None:
        position = (index, rank, self._sequence)
        self._sequence += 1
        fingerprint = item.fingerprint()
        current = self._entries.get(fingerprint)
        if current is None:
            self._entries[fingerprint] = (position, item)
            return
        action, rule = decide_conflict(current[1], item, self.options)
        outcome = rule or "duplicate"
        self.counters[outcome] = self.counters.get(outcome, 0) + 1
        if rule is None:
            self.problems.append(duplicate_message(item))
            _log.debug("duplicate_binding key=%s mode=%s", item.key, item.mode_name)
        if action == REPLACE:
            self._entries[fingerprint] = (position, item)

    def bindings(self) -> list[BindingItem]:
        ordered = sorted(self._entries.values(), key=lambda entry: entry[0])
        return [item for _, item in ordered]


def resolve(
    items: list[BindingItem], problems: list[str], options: CompileOptions
) -> list[BindingItem]:
    """Deduplicate bindings that need no prefix decomposition."""
    table = BindingTable(options, problems)
    for item in items:
        table.add(item, index=item.index)
    return table.bindings()
