from __future__ import annotations

import dataclasses
from copy import deepcopy

from modalbind._logging import get_logger
from modalbind.models import (
    ALL_PREFIXES,
    BindingItem,
    CompileOptions,
    PrefixCodeTable,
)
from modalbind.passes.conflicts import BindingTable

_log = get_logger("passes.prefixes")

# Automated prefix steps sort just before a manual prefix declared earlier.
_BEFORE_MANUAL = -1


class PrefixCodes:
    """Hands out small integer codes for prefixes in first-use order."""

    def __init__(self) -> None:
        self._codes: dict[str, int] = {"": 0}
        self._names: list[str] = [""]

    def code_for(self, prefix: str) -> int:
        if prefix not in self._codes:
            self._codes[prefix] = len(self._names)
            self._names.append(prefix)
        return self._codes[prefix]

    def freeze(self) -> PrefixCodeTable:
        entries = tuple((name, code) for code, name in enumerate(self._names))
        return PrefixCodeTable(entries=entries)


def split_prefixes(items: list[BindingItem]) -> list[BindingItem]:
    """Give every binding at most one allowed prefix."""
    split: list[BindingItem] = []
    for item in items:
        if len(item.prefixes) <= 1:
            split.append(item)
            continue
        for prefix in item.prefixes:
            split.append(dataclasses.replace(deepcopy(item), prefixes=(prefix,)))
    return split


def _extend(prefix: str, key: str) -> str:
    return f"{prefix} {key}" if prefix else key


def _automated_step(
    item: BindingItem, key: str, prefix: str, codes: PrefixCodes, options: CompileOptions
) -> BindingItem:
    code = codes.code_for(_extend(prefix, key))
    return BindingItem(
        key=key,
        commands=[
            {"command": options.prefix_command, "args": {"code": code, "automated": True}}
        ],
        index=item.index,
        when=item.when,
        mode=item.mode,
        implicit_mode=item.implicit_mode,
        prefixes=(prefix,),
        final_key=False,
        docs={"name": "prefix", "kind": "prefix"},
    )


def _manual_step(
    item: BindingItem, key: str, prefix: str, codes: PrefixCodes, options: CompileOptions
) -> BindingItem:
    code = codes.code_for(_extend(prefix, key))
    commands = [
        {"command": options.prefix_command, "args": {"code": code, "automated": False}}
        if command.get("command") == options.prefix_command
        else command
        for command in item.commands
    ]
    docs = dict(item.docs)
    docs.setdefault("kind", "prefix")
    return dataclasses.replace(
        item, key=key, commands=commands, prefixes=(prefix,), final_key=False, docs=docs
    )


def _require_concrete_prefixes(item: BindingItem, problems: list[str]) -> None:
    if item.prefixes == ALL_PREFIXES:
        problems.append(
            f"Key binding '{item.key}' for mode '{item.mode_name or 'any'}' is a "
            "prefix command; it cannot use '{{all_prefixes}}'."
        )


def compile_prefixes(
    items: list[BindingItem],
    problems: list[str],
    options: CompileOptions,
    *,
    counters: dict[str, int] | None = None,
) -> tuple[list[BindingItem], PrefixCodeTable]:
    """Decompose key sequences into prefix steps and deduplicate the result.

    ``"g d"`` becomes an automated prefix binding at ``g`` (advancing to the
    code of prefix ``"g"``) plus a binding at ``d`` that requires that code.
    Bindings must already carry at most one prefix each.
    """
    codes = PrefixCodes()
    table = BindingTable(options, problems, counters)
    manual_positions: dict[str, int] = {}

    for item in items:
        key = item.key.strip()
        if item.prefixes and item.prefixes[0]:
            key = f"{item.prefixes[0]} {key}"
        sequence = key.split()
        prefix = ""
        if item.only_runs(options.ignore_command) and len(item.key.split()) > 1:
            problems.append(
                f"Expected {options.ignore_command} commands to be single "
                f"sequence keys (found '{item.key}')."
            )
            continue

        if len(sequence) > 1:
            _require_concrete_prefixes(item, problems)
            for step_key in sequence[:-1]:
                step = _automated_step(item, step_key, prefix, codes, options)
                prefix = _extend(prefix, step_key)
                if prefix in manual_positions:
                    table.add(step, index=manual_positions[prefix], rank=_BEFORE_MANUAL)
                else:
                    table.add(step, index=item.index)

        suffix = sequence[-1]
        if item.find_command(options.prefix_command) is not None:
            _require_concrete_prefixes(item, problems)
            manual = _manual_step(item, suffix, prefix, codes, options)
            manual_positions.setdefault(_extend(prefix, suffix), item.index)
            table.add(manual, index=item.index)
        elif len(sequence) > 1:
            table.add(
                dataclasses.replace(item, key=suffix, prefixes=(prefix,)),
                index=item.index,
            )
        else:
            table.add(item, index=item.index)

    resolved = table.bindings()
    _log.debug(
        "prefixes_compiled input=%d output=%d codes=%d",
        len(items),
        len(resolved),
        len(codes.freeze().entries),
    )
    return resolved, codes.freeze()
