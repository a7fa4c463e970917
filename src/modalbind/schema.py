from __future__ import annotations

import re
from copy import deepcopy
from typing import Any, Mapping

from modalbind.keys import is_allowed_keybinding
from modalbind.legacy import ALL_PREFIXES_SENTINEL, coerce_version
from modalbind.models import (
    ALL_PREFIXES,
    BindingItem,
    CompileOptions,
    ConfigError,
    DefaultEntry,
    Header,
    KindSpec,
    ModeSpec,
    ParsedWhen,
    Specification,
)

_TOP_LEVEL_KEYS = {"header", "bind", "mode", "kind", "default", "define"}
_HEADER_KEYS = {"version", "name", "description", "requiredExtensions"}
_BINDING_KEYS = {
    "key",
    "command",
    "args",
    "computedArgs",
    "whenComputed",
    "when",
    "mode",
    "priority",
    "defaults",
    "foreach",
    "prefixes",
    "finalKey",
    "computedRepeat",
    "name",
    "description",
    "combinedName",
    "combinedKey",
    "combinedDescription",
    "hideInPalette",
    "hideInDocs",
    "kind",
}
_COMMAND_KEYS = {"command", "args", "computedArgs", "whenComputed"}
_MODE_KEYS = {
    "name",
    "default",
    "highlight",
    "recordEdits",
    "cursorShape",
    "onType",
    "fallbackBindings",
}
_DEFAULT_KEYS = {"id", "default", "appendWhen", "name", "description"}
_KIND_KEYS = {"name", "description"}
_DOC_STRING_KEYS = (
    "name",
    "description",
    "combinedName",
    "combinedKey",
    "combinedDescription",
    "kind",
    "defaults",
)
_DOC_FLAG_KEYS = ("hideInPalette", "hideInDocs")

HIGHLIGHTS = ("NoHighlight", "Highlight", "Alert")
CURSOR_SHAPES = ("Line", "Block", "Underline", "LineThin", "BlockOutline", "UnderlineThin")
INPUT_CAPTURE_COMMANDS = ("captureKeys", "replaceChar", "insertChar", "search")
DEFAULT_ID_RE = re.compile(r"[a-zA-Z0-9_-]+(\.[a-zA-Z0-9_-]+)*")


def _ensure_mapping(value: Any, *, label: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ConfigError(f"{label} must be a mapping")
    return value


def _ensure_non_empty_str(value: Any, *, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{label} must be a non-empty string")
    return value.strip()


def _optional_str(value: Any, *, label: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{label} must be a string")
    return value


def _optional_bool(value: Any, *, label: str) -> bool | None:
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ConfigError(f"{label} must be a boolean")
    return value


def _ensure_string_list(value: Any, *, label: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigError(f"{label} must be a string or a list of strings")
    for index, item in enumerate(value):
        if not isinstance(item, str):
            raise ConfigError(f"{label}[{index}] must be a string")
    return list(value)


def _reject_unknown(raw: Mapping[str, Any], allowed: set[str], *, label: str) -> None:
    unknown = sorted(str(key) for key in raw if key not in allowed)
    if unknown:
        raise ConfigError(f"{label} has unknown fields: {unknown}")


def parse_header(raw: Any) -> Header:
    header = _ensure_mapping(raw, label="header")
    _reject_unknown(header, _HEADER_KEYS, label="header")
    raw_version = header.get("version")
    if raw_version is None or isinstance(raw_version, bool):
        raise ConfigError("header.version is required")
    version = coerce_version(raw_version)
    if version is None or version[:2] != (2, 0):
        raise ConfigError(
            f"header.version: unsupported version '{raw_version}' (expected 2.0)"
        )
    return Header(
        version=str(raw_version),
        name=_optional_str(header.get("name"), label="header.name"),
        description=_optional_str(header.get("description"), label="header.description"),
        required_extensions=tuple(
            _ensure_string_list(
                header.get("requiredExtensions"), label="header.requiredExtensions"
            )
        ),
    )


def parse_when(value: Any, *, label: str) -> tuple[ParsedWhen, ...]:
    return tuple(
        ParsedWhen.from_text(text) for text in _ensure_string_list(value, label=label)
    )


def parse_command(raw: Any, *, label: str) -> dict[str, Any]:
    if isinstance(raw, str):
        return {"command": _ensure_non_empty_str(raw, label=label)}
    entry = _ensure_mapping(raw, label=label)
    if "defined" in entry:
        raise ConfigError(
            f"{label}: unresolved reference to defined command '{entry['defined']}'"
        )
    _reject_unknown(entry, _COMMAND_KEYS, label=label)
    command: dict[str, Any] = {
        "command": _ensure_non_empty_str(entry.get("command"), label=f"{label}.command")
    }
    for field in ("args", "computedArgs"):
        if entry.get(field) is not None:
            command[field] = deepcopy(
                dict(_ensure_mapping(entry[field], label=f"{label}.{field}"))
            )
    when_computed = _optional_str(entry.get("whenComputed"), label=f"{label}.whenComputed")
    if when_computed is not None:
        command["whenComputed"] = when_computed
    return command


def parse_command_list(raw: Any, *, label: str) -> list[dict[str, Any]]:
    if raw is None:
        return []
    if isinstance(raw, (str, Mapping)):
        return [parse_command(raw, label=label)]
    if not isinstance(raw, list):
        raise ConfigError(f"{label} must be a command or a list of commands")
    return [
        parse_command(item, label=f"{label}[{index}]") for index, item in enumerate(raw)
    ]


def _parse_binding_commands(raw: Mapping[str, Any], *, label: str) -> list[dict[str, Any]]:
    command_name = _ensure_non_empty_str(raw.get("command"), label=f"{label}.command")
    if command_name == "runCommands":
        args = _ensure_mapping(raw.get("args"), label=f"{label}.args")
        if not isinstance(args.get("commands"), list):
            raise ConfigError(f"{label}.args.commands must be a list")
        return parse_command_list(args["commands"], label=f"{label}.args.commands")
    return [
        parse_command(
            {field: raw[field] for field in _COMMAND_KEYS if raw.get(field) is not None},
            label=label,
        )
    ]


def _parse_key(value: Any, *, label: str) -> str:
    key = _ensure_non_empty_str(value, label=label)
    if not is_allowed_keybinding(key):
        raise ConfigError(f"{label}: invalid keybinding '{key}'")
    return " ".join(key.split()).lower()


def _parse_prefixes(value: Any, *, label: str) -> tuple[str, ...]:
    if value is None:
        return ("",)
    if value == ALL_PREFIXES_SENTINEL:
        return ALL_PREFIXES
    prefixes: list[str] = []
    for index, item in enumerate(_ensure_string_list(value, label=label)):
        if not item.strip():
            prefixes.append("")
            continue
        prefixes.append(_parse_key(item, label=f"{label}[{index}]"))
    return tuple(prefixes)


def _parse_mode_selector(value: Any, *, label: str) -> tuple[str, ...] | None:
    if value is None:
        return None
    modes = _ensure_string_list(value, label=label)
    if not modes:
        raise ConfigError(f"{label} must name at least one mode")
    return tuple(modes)


def _parse_number(value: Any, *, label: str) -> int | float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{label} must be a number")
    return value


def validate_binding(
    raw: Any,
    *,
    index: int,
    label: str,
    options: CompileOptions,
    kinds: tuple[KindSpec, ...] = (),
    problems: list[str] | None = None,
) -> BindingItem:
    """Check one expanded binding entry and convert it into a :class:`BindingItem`.

    Shape errors raise :class:`ConfigError` so the caller can drop the entry.
    Problems that leave the binding usable are appended to *problems*.
    """
    sink = problems if problems is not None else []
    entry = _ensure_mapping(raw, label=label)
    _reject_unknown(entry, _BINDING_KEYS, label=label)
    if "foreach" in entry:
        raise ConfigError(f"{label}.foreach was not expanded")

    key = _parse_key(entry.get("key"), label=f"{label}.key")
    commands = _parse_binding_commands(entry, label=label)
    capture = {options.command(name) for name in INPUT_CAPTURE_COMMANDS}
    if sum(1 for item in commands if item["command"] in capture) > 1:
        raise ConfigError(f"{label}: at most one input-capturing command is allowed")

    repeat = entry.get("computedRepeat")
    if repeat is not None and not isinstance(repeat, str):
        repeat = _parse_number(repeat, label=f"{label}.computedRepeat")
        if repeat is not None and repeat < 0:
            raise ConfigError(f"{label}.computedRepeat must not be negative")

    final_key = _optional_bool(entry.get("finalKey"), label=f"{label}.finalKey")
    if any(item["command"] == options.prefix_command for item in commands):
        if final_key is True:
            sink.append(
                f"{label}: 'finalKey' must be false for a command that calls "
                f"'{options.prefix_command}'"
            )
        final_key = False
    elif final_key is None:
        final_key = True

    docs: dict[str, Any] = {}
    for field in _DOC_STRING_KEYS:
        value = _optional_str(entry.get(field), label=f"{label}.{field}")
        if value is not None:
            docs[field] = value
    for field in _DOC_FLAG_KEYS:
        flag = _optional_bool(entry.get(field), label=f"{label}.{field}")
        if flag is not None:
            docs[field] = flag
    kind = docs.get("kind")
    if kind is not None and kinds and kind not in {item.name for item in kinds}:
        sink.append(f"{label}.kind: '{kind}' is not a declared kind")

    return BindingItem(
        key=key,
        commands=commands,
        index=index,
        when=parse_when(entry.get("when"), label=f"{label}.when"),
        mode=_parse_mode_selector(entry.get("mode"), label=f"{label}.mode"),
        prefixes=_parse_prefixes(entry.get("prefixes"), label=f"{label}.prefixes"),
        priority=_parse_number(entry.get("priority"), label=f"{label}.priority") or 0,
        final_key=final_key,
        computed_repeat=repeat,
        docs=docs,
    )


def _choice(value: Any, choices: tuple[str, ...], *, label: str, fallback: str) -> str:
    if value is None:
        return fallback
    if value not in choices:
        raise ConfigError(f"{label} must be one of {list(choices)}")
    return value


def parse_mode(raw: Any, *, label: str) -> ModeSpec:
    entry = _ensure_mapping(raw, label=label)
    _reject_unknown(entry, _MODE_KEYS, label=label)
    return ModeSpec(
        name=_ensure_non_empty_str(entry.get("name"), label=f"{label}.name"),
        default=bool(_optional_bool(entry.get("default"), label=f"{label}.default")),
        highlight=_choice(
            entry.get("highlight"), HIGHLIGHTS, label=f"{label}.highlight", fallback="NoHighlight"
        ),
        record_edits=bool(
            _optional_bool(entry.get("recordEdits"), label=f"{label}.recordEdits")
        ),
        cursor_shape=_choice(
            entry.get("cursorShape"), CURSOR_SHAPES, label=f"{label}.cursorShape", fallback="Line"
        ),
        on_type=tuple(parse_command_list(entry.get("onType"), label=f"{label}.onType")),
        fallback_bindings=_optional_str(
            entry.get("fallbackBindings"), label=f"{label}.fallbackBindings"
        )
        or None,
    )


def parse_default_entry(raw: Any, *, label: str) -> DefaultEntry:
    entry = _ensure_mapping(raw, label=label)
    _reject_unknown(entry, _DEFAULT_KEYS, label=label)
    default_id = entry.get("id")
    if not isinstance(default_id, str):
        raise ConfigError(f"{label}.id must be a string")
    if default_id and not DEFAULT_ID_RE.fullmatch(default_id):
        raise ConfigError(
            f"{label}.id: '{default_id}' must be dot-separated letters, digits, '_' or '-'"
        )
    fields = _ensure_mapping(entry.get("default", {}), label=f"{label}.default")
    _reject_unknown(fields, _BINDING_KEYS - {"defaults"}, label=f"{label}.default")
    return DefaultEntry(
        id=default_id,
        default=deepcopy(dict(fields)),
        append_when=tuple(
            _ensure_string_list(entry.get("appendWhen"), label=f"{label}.appendWhen")
        ),
    )


def parse_kind(raw: Any, *, label: str) -> KindSpec:
    entry = _ensure_mapping(raw, label=label)
    _reject_unknown(entry, _KIND_KEYS, label=label)
    return KindSpec(
        name=_ensure_non_empty_str(entry.get("name"), label=f"{label}.name"),
        description=_optional_str(entry.get("description"), label=f"{label}.description")
        or "",
    )


def _entries(document: Mapping[str, Any], field: str) -> list[Any]:
    raw = document.get(field)
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigError(f"{field} must be a list")
    return raw


def parse_specification(document: Any, problems: list[str]) -> Specification:
    """Split a document into its typed sections.

    A bad header or a section of the wrong shape raises :class:`ConfigError`.
    Individual malformed entries are reported in *problems* and skipped.
    """
    root = _ensure_mapping(document, label="document")
    unknown = sorted(str(key) for key in root if key not in _TOP_LEVEL_KEYS)
    if unknown:
        problems.append(f"document has unknown top-level fields: {unknown}")
    header = parse_header(root.get("header"))

    # Entries stay positional; the compiler reports non-mapping ones.
    bind = [deepcopy(raw) for raw in _entries(root, "bind")]

    modes: list[ModeSpec] = []
    for index, raw in enumerate(_entries(root, "mode")):
        try:
            modes.append(parse_mode(raw, label=f"mode[{index}]"))
        except ConfigError as exc:
            problems.append(str(exc))

    kinds: list[KindSpec] = []
    for index, raw in enumerate(_entries(root, "kind")):
        try:
            kind = parse_kind(raw, label=f"kind[{index}]")
        except ConfigError as exc:
            problems.append(str(exc))
            continue
        if any(existing.name == kind.name for existing in kinds):
            problems.append(f"kind[{index}]: duplicate kind '{kind.name}'")
            continue
        kinds.append(kind)

    defaults: list[DefaultEntry] = []
    for index, raw in enumerate(_entries(root, "default")):
        try:
            defaults.append(parse_default_entry(raw, label=f"default[{index}]"))
        except ConfigError as exc:
            problems.append(str(exc))

    define = root.get("define") or {}
    define = deepcopy(dict(_ensure_mapping(define, label="define")))

    return Specification(
        header=header,
        bind=tuple(bind),
        modes=tuple(modes),
        kinds=tuple(kinds),
        defaults=tuple(defaults),
        define=define,
    )
