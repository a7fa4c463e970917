from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from modalbind.utils import env_default, sha1_hex, stable_json

DEFAULT_NAMESPACE = "master-key"
_WHITESPACE_RE = re.compile(r"\s+")

# Prefix constraint meaning "active whatever has been typed so far".
ALL_PREFIXES: tuple[str, ...] = ()


class ModalBindError(RuntimeError):
    """Base error for binding compilation failures."""


class ConfigError(ModalBindError):
    """Raised when a binding document cannot be compiled at all."""


class ExpressionError(ModalBindError):
    """Raised when an expression is rejected before it runs."""


class EvaluationError(ModalBindError):
    """Raised when a compiled expression fails while running."""


@dataclass(frozen=True)
class CompileOptions:
    namespace: str = field(
        default_factory=lambda: env_default("MODALBIND_NAMESPACE", DEFAULT_NAMESPACE)
    )
    error_limit: int = 3

    def command(self, name: str) -> str:
        return f"{self.namespace}.{name}"

    @property
    def prefix_command(self) -> str:
        return self.command("prefix")

    @property
    def ignore_command(self) -> str:
        return self.command("ignore")


@dataclass(frozen=True)
class ParsedWhen:
    text: str
    expr_id: str

    @classmethod
    def from_text(cls, text: str) -> "ParsedWhen":
        # Guards that differ only in spacing share an id.
        return cls(text=text, expr_id=sha1_hex(_WHITESPACE_RE.sub("", text)))

    def to_json(self) -> dict[str, str]:
        return {"text": self.text, "id": self.expr_id}


@dataclass(frozen=True)
class Header:
    version: str
    name: str | None = None
    description: str | None = None
    required_extensions: tuple[str, ...] = ()


@dataclass(frozen=True)
class ModeSpec:
    name: str
    default: bool = False
    highlight: str = "NoHighlight"
    record_edits: bool = False
    cursor_shape: str = "Line"
    on_type: tuple[dict[str, Any], ...] = ()
    fallback_bindings: str | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "default": self.default,
            "highlight": self.highlight,
            "record_edits": self.record_edits,
            "cursor_shape": self.cursor_shape,
            "on_type": [dict(item) for item in self.on_type],
            "fallback_bindings": self.fallback_bindings,
        }


@dataclass(frozen=True)
class KindSpec:
    name: str
    description: str = ""


@dataclass(frozen=True)
class DefaultEntry:
    id: str
    default: dict[str, Any]
    append_when: tuple[str, ...] = ()


@dataclass(frozen=True)
class Specification:
    header: Header
    bind: tuple[Any, ...]
    modes: tuple[ModeSpec, ...]
    kinds: tuple[KindSpec, ...] = ()
    defaults: tuple[DefaultEntry, ...] = ()
    define: dict[str, Any] = field(default_factory=dict)


@dataclass
class BindingItem:
    """A validated binding moving through the compile passes.

    ``mode`` holds the mode selector until mode expansion and exactly one
    mode name afterwards. ``prefixes`` equal to ``ALL_PREFIXES`` places no
    restriction on the typed prefix.
    """

    key: str
    commands: list[dict[str, Any]]
    index: int
    when: tuple[ParsedWhen, ...] = ()
    mode: tuple[str, ...] | None = None
    implicit_mode: bool = False
    prefixes: tuple[str, ...] = ("",)
    priority: float = 0
    final_key: bool = True
    computed_repeat: int | float | str | None = None
    docs: dict[str, Any] = field(default_factory=dict)

    def find_command(self, command: str) -> dict[str, Any] | None:
        for item in self.commands:
            if item.get("command") == command:
                return item
        return None

    def only_runs(self, command: str) -> bool:
        return len(self.commands) == 1 and self.commands[0].get("command") == command

    @property
    def mode_name(self) -> str | None:
        return self.mode[0] if self.mode else None

    def fingerprint(self) -> str:
        return sha1_hex(
            {
                "key": self.key,
                "mode": self.mode_name,
                "when": sorted(guard.expr_id for guard in self.when),
                "prefixes": list(self.prefixes),
            }
        )

    def content(self) -> str:
        """Everything that distinguishes two bindings apart from their position."""
        return stable_json(
            {
                "key": self.key,
                "commands": self.commands,
                "when": [guard.expr_id for guard in self.when],
                "mode": list(self.mode) if self.mode is not None else None,
                "implicit_mode": self.implicit_mode,
                "prefixes": list(self.prefixes),
                "final_key": self.final_key,
                "computed_repeat": self.computed_repeat,
                "docs": self.docs,
            }
        )


@dataclass(frozen=True)
class PrefixCodeTable:
    entries: tuple[tuple[str, int], ...] = (("", 0),)

    def code_of(self, prefix: str) -> int | None:
        for known, code in self.entries:
            if known == prefix:
                return code
        return None

    def prefix_of(self, code: int) -> str | None:
        for prefix, known in self.entries:
            if known == code:
                return prefix
        return None

    def to_json(self) -> dict[str, int]:
        return {prefix: code for prefix, code in self.entries}


@dataclass(frozen=True)
class ConcreteBinding:
    key: str
    mode: str | None
    when: str | None
    guards: tuple[ParsedWhen, ...]
    commands: tuple[dict[str, Any], ...]
    index: int
    final_key: bool = True
    computed_repeat: int | float | str | None = None
    prefix_code: int | None = None
    prefix_descriptions: tuple[str, ...] = ()
    docs: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "mode": self.mode,
            "when": self.when,
            "guards": [guard.to_json() for guard in self.guards],
            "commands": [dict(item) for item in self.commands],
            "index": self.index,
            "final_key": self.final_key,
            "computed_repeat": self.computed_repeat,
            "prefix_code": self.prefix_code,
            "prefix_descriptions": list(self.prefix_descriptions),
            "docs": dict(self.docs),
        }


@dataclass(frozen=True)
class CompileResult:
    bindings: tuple[ConcreteBinding, ...]
    prefix_codes: PrefixCodeTable
    problems: tuple[str, ...]
    modes: tuple[ModeSpec, ...] = ()
    kinds: tuple[KindSpec, ...] = ()
    define: dict[str, Any] = field(default_factory=dict)
    name: str | None = None
    description: str | None = None
    required_extensions: tuple[str, ...] = ()
    diagnostics: dict[str, Any] = field(default_factory=dict)
    checksum: str | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "required_extensions": list(self.required_extensions),
            "modes": [mode.to_json() for mode in self.modes],
            "kinds": [
                {"name": kind.name, "description": kind.description}
                for kind in self.kinds
            ],
            "define": dict(self.define),
            "bindings": [binding.to_json() for binding in self.bindings],
            "prefix_codes": self.prefix_codes.to_json(),
            "problems": list(self.problems),
            "diagnostics": dict(self.diagnostics),
            "checksum": self.checksum,
        }
