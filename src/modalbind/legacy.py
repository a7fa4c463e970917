"""Rewrite version 1 binding documents into the current layout.

The upgrade is a single structural walk over the document. At each node the
walker checks the ordered :data:`LEGACY_RULES`; the first rule whose path
pattern matches either renames the field (and the walk continues under the
new name) or rewrites the value outright. Nodes no rule claims are copied
through, with mappings walked key by key and lists element by element.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from modalbind._logging import get_logger

_log = get_logger("legacy")

PathSegment = str | int
DocPath = tuple[PathSegment, ...]

ANY_INDEX = object()
ALL_PREFIXES_SENTINEL = "{{all_prefixes}}"
_LEGACY_ALL_PREFIXES = "<all-prefixes>"
_VERSION_RE = re.compile(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?")
_SINGLE_BRACE_RE = re.compile(r"(?<!\{)\{([^{}]*)\}(?!\})")


def coerce_version(text: Any) -> tuple[int, int, int] | None:
    """Pull the first ``major[.minor[.patch]]`` triple out of *text*."""
    match = _VERSION_RE.search(str(text)) if text is not None else None
    if match is None:
        return None
    major, minor, patch = match.groups()
    return int(major), int(minor or 0), int(patch or 0)


def is_legacy(document: Any) -> bool:
    if not isinstance(document, Mapping):
        return False
    header = document.get("header")
    if not isinstance(header, Mapping):
        return False
    version = coerce_version(header.get("version"))
    return version is not None and version[0] == 1


def double_braces(text: str) -> str:
    return _SINGLE_BRACE_RE.sub(r"{{\1}}", text)


def _double_braces_nested(value: Any) -> Any:
    if isinstance(value, str):
        return double_braces(value)
    if isinstance(value, Mapping):
        return {key: _double_braces_nested(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_double_braces_nested(item) for item in value]
    return value


def _short_command(command: Any) -> str:
    return str(command).rsplit(".", 1)[-1] if command else ""


def _drop_none(mapping: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in mapping.items() if value is not None}


def upgrade_command_args(command: Any, args: Any) -> Any:
    """Rename the argument fields of commands whose signature changed."""
    if args is None:
        return None
    name = _short_command(command)
    if name == "runCommands" and isinstance(args, Mapping):
        commands = []
        for item in args.get("commands", []) or []:
            if not isinstance(item, Mapping):
                commands.append(item)
                continue
            commands.append(
                _drop_none(
                    {
                        **item,
                        "args": upgrade_command_args(item.get("command"), item.get("args")),
                        "computedArgs": upgrade_command_args(
                            item.get("command"), item.get("computedArgs")
                        ),
                    }
                )
            )
        return {**args, "commands": commands}
    if name in ("storeNamed", "restoreNamed") and isinstance(args, Mapping):
        return {
            "description": double_braces(str(args.get("description", ""))),
            "register": double_braces(str(args.get("name", ""))),
        }
    if name in ("pushHistoryToStack", "replayFromStack") and isinstance(args, Mapping):
        return _drop_none(
            {
                "whereComputedIndexIs": (
                    double_braces(str(args["at"])) if args.get("at") else None
                ),
                "whereComputedRangeIs": (
                    double_braces(str(args["range"])) if args.get("range") else None
                ),
            }
        )
    return _double_braces_nested(args)


def _binding_command(root: Mapping[str, Any], path: DocPath) -> Any:
    bindings = root.get("bind")
    index = path[1]
    if isinstance(bindings, list) and isinstance(index, int) and index < len(bindings):
        entry = bindings[index]
        if isinstance(entry, Mapping):
            return entry.get("command")
    return None


@dataclass(frozen=True)
class LegacyRule:
    pattern: tuple[Any, ...]
    rename: str | None = None
    rewrite: Callable[[Any, DocPath, Mapping[str, Any]], Any] | None = None

    def matches(self, path: DocPath) -> bool:
        if len(path) != len(self.pattern):
            return False
        for expected, actual in zip(self.pattern, path):
            if expected is ANY_INDEX:
                if not isinstance(actual, int):
                    return False
            elif expected != actual:
                return False
        return True


LEGACY_RULES: tuple[LegacyRule, ...] = (
    LegacyRule(("header", "version"), rewrite=lambda value, path, root: "2.0"),
    LegacyRule(("bind", ANY_INDEX, "path"), rename="defaults"),
    LegacyRule(("bind", ANY_INDEX, "resetTransient"), rename="finalKey"),
    LegacyRule(("bind", ANY_INDEX, "repeat"), rename="computedRepeat"),
    LegacyRule(("bind", ANY_INDEX, "if"), rename="whenComputed"),
    LegacyRule(
        ("bind", ANY_INDEX, "prefixes"),
        rewrite=lambda value, path, root: (
            ALL_PREFIXES_SENTINEL if value == _LEGACY_ALL_PREFIXES else value
        ),
    ),
    LegacyRule(
        ("bind", ANY_INDEX, "foreach"),
        rewrite=lambda value, path, root: _double_braces_nested(value),
    ),
    LegacyRule(
        ("bind", ANY_INDEX, "args"),
        rewrite=lambda value, path, root: upgrade_command_args(
            _binding_command(root, path), value
        ),
    ),
    LegacyRule(
        ("bind", ANY_INDEX, "computedArgs"),
        rewrite=lambda value, path, root: upgrade_command_args(
            _binding_command(root, path), value
        ),
    ),
    LegacyRule(("path",), rename="default"),
    LegacyRule(("default", ANY_INDEX, "when"), rename="appendWhen"),
)


def _step(
    value: Any, path: DocPath, root: Mapping[str, Any], rules: tuple[LegacyRule, ...]
) -> tuple[PathSegment, Any]:
    for rule in rules:
        if not rule.matches(path):
            continue
        if rule.rename is not None:
            return _step(value, path[:-1] + (rule.rename,), root, rules)
        if rule.rewrite is not None:
            return path[-1], rule.rewrite(value, path, root)
    if isinstance(value, Mapping):
        walked: dict[str, Any] = {}
        for key, item in value.items():
            new_key, new_item = _step(item, path + (str(key),), root, rules)
            walked[str(new_key)] = new_item
        return (path[-1] if path else ""), walked
    if isinstance(value, list):
        return (path[-1] if path else ""), [
            _step(item, path + (index,), root, rules)[1]
            for index, item in enumerate(value)
        ]
    return (path[-1] if path else ""), value


def upgrade(
    document: Mapping[str, Any], *, rules: tuple[LegacyRule, ...] = LEGACY_RULES
) -> dict[str, Any]:
    """Return the upgraded document, or a plain copy when it is not legacy."""
    if not is_legacy(document):
        _, copied = _step(document, (), document, ())
        return copied
    _log.warning(
        "legacy_upgrade version=%s", document.get("header", {}).get("version")
    )
    _, upgraded = _step(document, (), document, rules)
    return upgraded
