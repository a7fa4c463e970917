from __future__ import annotations

import itertools
from copy import deepcopy
from typing import Any, Mapping

from modalbind._logging import get_logger
from modalbind.expression import Evaluator
from modalbind.keys import expand_key_pattern
from modalbind.legacy import ALL_PREFIXES_SENTINEL
from modalbind.models import ConfigError

_log = get_logger("passes.foreach")


def _definition_commands(
    definition: Any, *, name: str, label: str
) -> list[Any]:
    entries = definition if isinstance(definition, list) else [definition]
    for entry in entries:
        nested = (
            entry == "runCommands"
            if isinstance(entry, str)
            else isinstance(entry, Mapping)
            and ("defined" in entry or entry.get("command") == "runCommands")
        )
        if nested:
            raise ConfigError(
                f"{label}: 'define.{name}' may not nest runCommands or defined commands"
            )
        if not isinstance(entry, (str, Mapping)):
            raise ConfigError(f"{label}: 'define.{name}' must hold commands")
    return deepcopy(entries)


def expand_defined_commands(
    raw: Mapping[str, Any], define: Mapping[str, Any], *, label: str = "bind"
) -> dict[str, Any]:
    """Splice ``{defined: name}`` entries of a ``runCommands`` binding."""
    args = raw.get("args")
    if (
        raw.get("command") != "runCommands"
        or not isinstance(args, Mapping)
        or not isinstance(args.get("commands"), list)
    ):
        return dict(raw)
    commands: list[Any] = []
    for index, item in enumerate(args["commands"]):
        if not (isinstance(item, Mapping) and "defined" in item):
            commands.append(item)
            continue
        name = str(item["defined"])
        if name not in define:
            raise ConfigError(
                f"{label}.args.commands[{index}]: command definition missing under "
                f"'define.{name}'"
            )
        commands.extend(
            _definition_commands(
                define[name], name=name, label=f"{label}.args.commands[{index}]"
            )
        )
    return {**raw, "args": {**args, "commands": commands}}


def foreach_values(foreach: Any, *, label: str = "bind") -> dict[str, list[Any]]:
    if not isinstance(foreach, Mapping):
        raise ConfigError(f"{label}.foreach must be a mapping")
    values: dict[str, list[Any]] = {}
    for name, patterns in foreach.items():
        if not isinstance(patterns, list):
            raise ConfigError(f"{label}.foreach.{name} must be a list")
        expanded: list[Any] = []
        for pattern in patterns:
            if isinstance(pattern, str):
                expanded.extend(
                    expand_key_pattern(pattern, label=f"{label}.foreach.{name}")
                )
            else:
                expanded.append(pattern)
        values[str(name)] = expanded
    return values


def expand_foreach(
    raw: Mapping[str, Any],
    define: Mapping[str, Any],
    evaluator: Evaluator,
    *,
    label: str = "bind",
) -> list[dict[str, Any]]:
    """Produce one binding per combination of ``foreach`` values.

    Every string field of the binding is run through template
    substitution with the definitions and the combination in scope.
    """
    if "foreach" not in raw:
        return [dict(raw)]
    values = foreach_values(raw["foreach"], label=label)
    template = {key: value for key, value in raw.items() if key != "foreach"}
    keep_prefixes = template.get("prefixes") == ALL_PREFIXES_SENTINEL
    if keep_prefixes:
        del template["prefixes"]

    names = list(values)
    expanded: list[dict[str, Any]] = []
    for combination in itertools.product(*(values[name] for name in names)):
        scope = {**define, **dict(zip(names, combination))}
        item = evaluator.substitute(template, scope)
        if keep_prefixes:
            item["prefixes"] = ALL_PREFIXES_SENTINEL
        expanded.append(item)
    _log.debug(
        "foreach_expanded label=%s variables=%s count=%d", label, names, len(expanded)
    )
    return expanded
