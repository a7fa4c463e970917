from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Mapping

from modalbind._logging import get_logger
from modalbind.models import DefaultEntry
from modalbind.utils import deep_merge

_log = get_logger("passes.defaults")

# Fields merged recursively; every other field is overwritten.
MERGED_FIELDS = ("args", "computedArgs")


@dataclass(frozen=True)
class DefaultsTable:
    fields: dict[str, dict[str, Any]] = field(default_factory=lambda: {"": {}})
    append_when: dict[str, tuple[str, ...]] = field(default_factory=lambda: {"": ()})

    def lookup(self, default_id: str) -> tuple[dict[str, Any], tuple[str, ...]] | None:
        if default_id not in self.fields:
            return None
        return self.fields[default_id], self.append_when.get(default_id, ())


def merge_default_fields(
    base: Mapping[str, Any], override: Mapping[str, Any]
) -> dict[str, Any]:
    merged = deepcopy(dict(base))
    for key, value in override.items():
        if key in MERGED_FIELDS and key in merged:
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


def resolve_defaults(
    entries: tuple[DefaultEntry, ...] | list[DefaultEntry], problems: list[str]
) -> DefaultsTable:
    """Accumulate each default id on top of its dot-path parent.

    A parent must be declared before its children. When it is not, the
    child is still registered, but with only its own fields.
    """
    table = DefaultsTable()
    declared: set[str] = set()
    for entry in entries:
        if entry.id in declared:
            problems.append(f"The default '{entry.id}' is defined more than once.")
            continue
        declared.add(entry.id)
        base: dict[str, Any] = {}
        chain: tuple[str, ...] = ()
        parts = entry.id.split(".")
        if len(parts) > 1:
            parent = ".".join(parts[:-1])
            inherited = table.lookup(parent)
            if inherited is None:
                problems.append(
                    f"The default '{entry.id}' was defined before '{parent}'."
                )
            else:
                base, chain = inherited
        table.fields[entry.id] = merge_default_fields(base, entry.default)
        table.append_when[entry.id] = chain + entry.append_when
    _log.debug("defaults_resolved count=%d", len(table.fields) - 1)
    return table


def _when_list(value: Any) -> list[Any] | None:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return list(value)
    return None


def apply_defaults(
    raw: Mapping[str, Any],
    table: DefaultsTable,
    problems: list[str],
    *,
    label: str = "bind",
) -> dict[str, Any]:
    """Merge the referenced default underneath *raw* and append its guards."""
    reference = raw.get("defaults", "")
    if not isinstance(reference, str):
        reference = str(reference)
    found = table.lookup(reference)
    if found is None:
        problems.append(f"{label}: The default '{reference}' is undefined.")
        base: dict[str, Any] = {}
        chain: tuple[str, ...] = ()
    else:
        base, chain = found
    merged = merge_default_fields(base, raw)
    when = _when_list(merged.get("when"))
    if when is None:
        # Left for validation to report.
        return merged
    when += chain
    if when:
        merged["when"] = when
    return merged
