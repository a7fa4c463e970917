from __future__ import annotations

import dataclasses

from modalbind.models import BindingItem

# Documentation shared by every binding of one key in one mode and prefix.
SHARED_DOC_FIELDS = (
    "name",
    "description",
    "combinedName",
    "combinedDescription",
    "combinedKey",
)


def _group(item: BindingItem) -> tuple[str, str | None, str | None]:
    return item.key, item.mode_name, item.prefixes[0] if item.prefixes else None


def merge_group_docs(items: list[BindingItem]) -> list[BindingItem]:
    """Copy the first non-empty value of each shared field across its group."""
    shared: dict[tuple[str, str | None, str | None], dict[str, object]] = {}
    for item in items:
        docs = shared.setdefault(_group(item), {})
        for field in SHARED_DOC_FIELDS:
            value = item.docs.get(field)
            if field not in docs and value not in (None, ""):
                docs[field] = value
    return [
        dataclasses.replace(item, docs={**item.docs, **shared[_group(item)]})
        for item in items
    ]
