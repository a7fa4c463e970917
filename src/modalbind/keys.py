"""Key names accepted in bindings, and the catalog used by ``{{key: ...}}``."""

from __future__ import annotations

import re

from modalbind.models import ConfigError

_MODIFIER_RE = re.compile(r"ctrl|shift|alt|cmd|win|meta", re.IGNORECASE)

_KEY_PATTERNS = tuple(
    re.compile(pattern, flags)
    for pattern, flags in (
        (r"f[1-9]|f1[0-9]", re.IGNORECASE),
        (r"[a-z]", 0),
        (r"[0-9]", 0),
        (r"[`\-=\[\]\\;',./]", 0),
        (
            r"left|up|right|down|pageup|pagedown|end|home|tab|enter|escape|space"
            r"|backspace|delete|pausebreak|capslock|insert",
            re.IGNORECASE,
        ),
        (
            r"numpad[0-9]|numpad_(multiply|add|separator|subtract|decimal|divide)",
            re.IGNORECASE,
        ),
        (
            r"\[(f[1-9]|f1[0-9]|Key[A-Z]|Digit[0-9]|Numpad[0-9])\]",
            re.IGNORECASE,
        ),
        (
            r"\[(Backquote|Minus|Equal|BracketLeft|BracketRight|Backslash|Semicolon"
            r"|Quote|Comma|Period|Slash|ArrowLeft|ArrowUp|ArrowRight|ArrowDown"
            r"|PageUp|PageDown|End|Home|Tab|Enter|Escape|Space|Backspace|Delete"
            r"|Pause|CapsLock|Insert|NumpadMultiply|NumpadAdd|NumpadComma"
            r"|NumpadSubtract|NumpadDecimal|NumpadDivide)\]",
            0,
        ),
    )
)


def _catalog() -> tuple[str, ...]:
    names: list[str] = [f"f{i}" for i in range(1, 20)]
    names += [str(i) for i in range(10)]
    names += [chr(c) for c in range(ord("a"), ord("z") + 1)]
    names += ["`", "-", "=", "[", "]", "\\", ";", "'", ",", ".", "/"]
    names += [
        "left", "up", "right", "down", "pageup", "pagedown", "end", "home",
        "tab", "enter", "escape", "space", "backspace", "delete", "pausebreak",
        "capslock", "insert",
    ]
    names += [f"numpad{i}" for i in range(10)]
    names += [
        f"numpad_{op}"
        for op in ("multiply", "add", "separator", "subtract", "decimal", "divide")
    ]
    names += [f"[F{i}]" for i in range(1, 20)]
    names += [f"[Key{chr(c)}]" for c in range(ord("A"), ord("Z") + 1)]
    names += [f"[Digit{i}]" for i in range(10)]
    names += [
        f"[{name}]"
        for name in (
            "Backquote", "Minus", "Equal", "BracketLeft", "BracketRight",
            "Backslash", "Semicolon", "Quote", "Comma", "Period", "Slash",
            "ArrowLeft", "ArrowUp", "ArrowRight", "ArrowDown", "PageUp",
            "PageDown", "End", "Home", "Tab", "Enter", "Escape", "Space",
            "Backspace", "Delete", "Pause", "CapsLock", "Insert",
        )
    ]
    names += [f"[Numpad{i}]" for i in range(10)]
    names += [
        f"[Numpad{op}]"
        for op in ("Multiply", "Add", "Comma", "Subtract", "Decimal", "Divide")
    ]
    return tuple(names)


# Both layout-dependent and layout-independent spellings.
ALL_KEYS = _catalog()

KEY_MACRO_RE = re.compile(r"\{\{key(:\s*(.*?))?\}\}")


def is_allowed_press(press: str) -> bool:
    *modifiers, key = press.split("+")
    if not key:
        return False
    if any(not _MODIFIER_RE.fullmatch(mod) for mod in modifiers):
        return False
    return any(pattern.fullmatch(key) for pattern in _KEY_PATTERNS)


def is_allowed_keybinding(key: str) -> bool:
    presses = key.split()
    return bool(presses) and all(is_allowed_press(press) for press in presses)


def expand_key_pattern(pattern: str, *, label: str = "foreach") -> list[str]:
    """Expand a ``{{key: <regex>}}`` macro into one value per matching key.

    Patterns without the macro come back unchanged as a one-element list.
    """
    match = KEY_MACRO_RE.search(pattern)
    if match is None:
        return [pattern]
    keys = ALL_KEYS
    if match.group(2):
        try:
            key_re = re.compile(match.group(2).strip(), re.IGNORECASE)
        except re.error as exc:
            raise ConfigError(
                f"{label}: invalid key pattern '{match.group(2).strip()}': {exc}"
            ) from exc
        keys = tuple(key for key in ALL_KEYS if key_re.fullmatch(key))
    return [pattern[: match.start()] + key + pattern[match.end() :] for key in keys]
