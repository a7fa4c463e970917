from __future__ import annotations

import dataclasses
from copy import deepcopy

from modalbind._logging import get_logger
from modalbind.models import BindingItem, ModeSpec

_log = get_logger("passes.modes")

IMPLIED_DEFAULT_MODE = ModeSpec(name="default", default=True, record_edits=True)
CAPTURE_MODE = ModeSpec(name="capture", highlight="Highlight", cursor_shape="Underline")


def resolve_mode_table(
    modes: tuple[ModeSpec, ...] | list[ModeSpec], problems: list[str]
) -> tuple[ModeSpec, ...]:
    """Settle the declared modes into a table with exactly one default mode."""
    if not modes:
        return (IMPLIED_DEFAULT_MODE, CAPTURE_MODE)

    unique: list[ModeSpec] = []
    for mode in modes:
        if any(existing.name == mode.name for existing in unique):
            problems.append(f"Mode '{mode.name}' is defined more than once.")
            continue
        unique.append(mode)

    defaults = [mode.name for mode in unique if mode.default]
    if not defaults:
        problems.append(
            f"There must be exactly one default mode; none is marked, "
            f"using '{unique[0].name}'."
        )
        unique[0] = dataclasses.replace(unique[0], default=True)
    elif len(defaults) > 1:
        problems.append(
            f"There must be exactly one default mode; found {defaults}, "
            f"using '{defaults[0]}'."
        )
        unique = [
            dataclasses.replace(mode, default=False)
            if mode.default and mode.name != defaults[0]
            else mode
            for mode in unique
        ]

    if not any(mode.name == CAPTURE_MODE.name for mode in unique):
        unique.append(CAPTURE_MODE)

    names = {mode.name for mode in unique}
    for position, mode in enumerate(unique):
        if mode.fallback_bindings and mode.fallback_bindings not in names:
            problems.append(
                f"Mode '{mode.name}' falls back to undefined mode "
                f"'{mode.fallback_bindings}'."
            )
            unique[position] = dataclasses.replace(mode, fallback_bindings=None)
    return tuple(unique)


def select_modes(
    selector: tuple[str, ...] | None,
    modes: tuple[ModeSpec, ...],
    problems: list[str],
    *,
    key: str = "",
) -> list[str]:
    """Resolve a mode selector into the explicit list of mode names."""
    names = [mode.name for mode in modes]
    if selector is None:
        return [mode.name for mode in modes if mode.default][:1]
    chosen = list(selector)
    if any(name.startswith("!") for name in chosen):
        if not all(name.startswith("!") for name in chosen):
            problems.append(
                f"Either all or none of the modes for binding '{key}' must be "
                "prefixed with '!'"
            )
            chosen = [name for name in chosen if name.startswith("!")]
        excluded = {name[1:] for name in chosen}
        return [name for name in names if name not in excluded]
    # Plain selectors may name modes that were never declared.
    selected: list[str] = []
    for name in chosen:
        if name not in selected:
            selected.append(name)
    return selected


def expand_modes(
    items: list[BindingItem], modes: tuple[ModeSpec, ...], problems: list[str]
) -> list[BindingItem]:
    """Copy each binding once per mode it applies to.

    A mode whose ``fallbackBindings`` names mode ``T`` also receives an
    implicit copy of every binding placed in ``T``.
    """
    fallbacks: dict[str, list[str]] = {}
    for mode in modes:
        if mode.fallback_bindings:
            fallbacks.setdefault(mode.fallback_bindings, []).append(mode.name)

    expanded: list[BindingItem] = []
    for item in items:
        explicit = select_modes(item.mode, modes, problems, key=item.key)
        implicit: list[str] = []
        for name in explicit:
            for fallback in fallbacks.get(name, []):
                if fallback not in implicit:
                    implicit.append(fallback)
        for name in explicit:
            expanded.append(
                dataclasses.replace(deepcopy(item), mode=(name,), implicit_mode=False)
            )
        for name in implicit:
            expanded.append(
                dataclasses.replace(deepcopy(item), mode=(name,), implicit_mode=True)
            )
    _log.debug("modes_expanded input=%d output=%d", len(items), len(expanded))
    return expanded
