"""Compile a binding document into a flat table of concrete bindings.

The passes run in a fixed order:

1. upgrade version 1 documents (:mod:`modalbind.legacy`)
2. split the document into typed sections (:mod:`modalbind.schema`)
3. merge defaults, splice defined commands, expand ``foreach``
4. validate each expanded entry and sort by priority
5. split multi-prefix bindings, expand modes, share documentation
6. decompose key sequences into prefix steps and resolve conflicts
7. fold mode and prefix requirements into each binding's guard

Only a malformed header (or a top-level section of the wrong shape) raises;
everything else ends up in ``CompileResult.problems``.
"""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any, Iterable, Mapping

from modalbind._logging import get_logger
from modalbind.document import read_document
from modalbind.expression import Evaluator
from modalbind.legacy import is_legacy, upgrade
from modalbind.models import (
    BindingItem,
    CompileOptions,
    CompileResult,
    ConcreteBinding,
    ConfigError,
    ModalBindError,
    ParsedWhen,
    PrefixCodeTable,
    Specification,
)
from modalbind.passes.defaults import apply_defaults, resolve_defaults
from modalbind.passes.docs import merge_group_docs
from modalbind.passes.foreach import expand_defined_commands, expand_foreach
from modalbind.passes.modes import expand_modes, resolve_mode_table
from modalbind.passes.prefixes import compile_prefixes, split_prefixes
from modalbind.schema import parse_specification, validate_binding
from modalbind.utils import sha1_hex

_log = get_logger("compiler")


def mode_guard(mode: str, options: CompileOptions) -> ParsedWhen:
    return ParsedWhen.from_text(f"{options.namespace}.mode == '{mode}'")


def prefix_guard(codes: Iterable[int], options: CompileOptions) -> ParsedWhen:
    return ParsedWhen.from_text(
        " || ".join(f"{options.namespace}.prefixCode == {code}" for code in codes)
    )


def assemble_binding(
    item: BindingItem, codes: PrefixCodeTable, options: CompileOptions
) -> ConcreteBinding:
    """Fold the mode and prefix requirements of *item* into its guard."""
    guards = list(item.when)
    mode = item.mode_name
    if mode is not None:
        guards.append(mode_guard(mode, options))

    allowed: list[int] = []
    descriptions: list[str] = []
    for prefix in item.prefixes:
        code = codes.code_of(prefix)
        if code is None:
            raise ModalBindError(f"no prefix code was assigned to prefix '{prefix}'")
        allowed.append(code)
        descriptions.append(f"{code}: {prefix}")
    if allowed:
        guards.append(prefix_guard(allowed, options))

    when = "(" + ") && (".join(guard.text for guard in guards) + ")" if guards else None
    return ConcreteBinding(
        key=item.key,
        mode=mode,
        when=when,
        guards=tuple(guards),
        commands=tuple(item.commands),
        index=item.index,
        final_key=item.final_key,
        computed_repeat=item.computed_repeat,
        prefix_code=allowed[0] if allowed else None,
        prefix_descriptions=tuple(descriptions),
        docs=dict(item.docs),
    )


def _expand_entries(
    spec: Specification,
    options: CompileOptions,
    problems: list[str],
) -> list[BindingItem]:
    defaults = resolve_defaults(spec.defaults, problems)
    evaluator = Evaluator(error_limit=options.error_limit)
    items: list[BindingItem] = []
    for index, raw in enumerate(spec.bind):
        label = f"bind[{index}]"
        if not isinstance(raw, Mapping):
            problems.append(f"{label} must be a mapping")
            continue
        try:
            merged = apply_defaults(raw, defaults, problems, label=label)
            merged = expand_defined_commands(merged, spec.define, label=label)
            expanded = expand_foreach(merged, spec.define, evaluator, label=label)
        except ConfigError as exc:
            problems.append(str(exc))
            continue
        finally:
            problems.extend(evaluator.report_errors())
        for entry in expanded:
            try:
                items.append(
                    validate_binding(
                        entry,
                        index=index,
                        label=label,
                        options=options,
                        kinds=spec.kinds,
                        problems=problems,
                    )
                )
            except ConfigError as exc:
                problems.append(str(exc))
    return items


def compile_specification(
    spec: Specification,
    *,
    options: CompileOptions | None = None,
    problems: list[str] | None = None,
) -> CompileResult:
    opts = options or CompileOptions()
    found = list(problems or [])
    modes = resolve_mode_table(spec.modes, found)

    items = _expand_entries(spec, opts, found)
    expanded_count = len(items)
    # Stable sort: among equal priorities declaration order is kept.
    items = sorted(items, key=lambda item: item.priority)
    items = split_prefixes(items)
    items = expand_modes(items, modes, found)
    mode_count = len(items)
    items = merge_group_docs(items)

    conflicts: dict[str, int] = {}
    resolved, codes = compile_prefixes(items, found, opts, counters=conflicts)
    bindings = tuple(assemble_binding(item, codes, opts) for item in resolved)

    diagnostics = {
        "raw_bindings": len(spec.bind),
        "expanded_bindings": expanded_count,
        "mode_bindings": mode_count,
        "bindings": len(bindings),
        "prefix_codes": len(codes.entries),
        "conflicts": dict(sorted(conflicts.items())),
        "problems": len(found),
    }
    _log.info(
        "compile_done raw=%d bindings=%d prefix_codes=%d problems=%d",
        len(spec.bind),
        len(bindings),
        len(codes.entries),
        len(found),
    )
    return CompileResult(
        bindings=bindings,
        prefix_codes=codes,
        problems=tuple(found),
        modes=modes,
        kinds=spec.kinds,
        define={**spec.define, "prefixCodes": codes.to_json()},
        name=spec.header.name,
        description=spec.header.description,
        required_extensions=spec.header.required_extensions,
        diagnostics=diagnostics,
    )


def compile_document(
    document: Mapping[str, Any], *, options: CompileOptions | None = None
) -> CompileResult:
    """Compile an already parsed binding document.

    Raises :class:`ConfigError` when the header is missing, malformed or of
    an unsupported version. All other issues are returned as problems.
    """
    legacy = is_legacy(document)
    if legacy:
        document = upgrade(document)
    problems: list[str] = []
    spec = parse_specification(document, problems)
    result = compile_specification(spec, options=options, problems=problems)
    return dataclasses.replace(
        result, diagnostics={**result.diagnostics, "legacy_upgraded": legacy}
    )


def compile_file(
    path: str | Path, *, options: CompileOptions | None = None
) -> CompileResult:
    """Read, compile and checksum the binding file at *path*."""
    document, text = read_document(path)
    _log.info("compile_file path=%s", path)
    result = compile_document(document, options=options)
    return dataclasses.replace(result, checksum=sha1_hex(text))


def group_by_index(
    bindings: Iterable[ConcreteBinding],
) -> dict[int, list[ConcreteBinding]]:
    """Group concrete bindings by the declaration they were compiled from."""
    grouped: dict[int, list[ConcreteBinding]] = {}
    for binding in bindings:
        grouped.setdefault(binding.index, []).append(binding)
    return dict(sorted(grouped.items()))
