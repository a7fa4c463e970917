from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Sequence

import yaml
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from modalbind._logging import setup_logging
from modalbind.compiler import compile_file, group_by_index
from modalbind.document import read_document
from modalbind.expression import UNDEFINED, Evaluator, format_value
from modalbind.legacy import is_legacy, upgrade
from modalbind.models import (
    DEFAULT_NAMESPACE,
    CompileOptions,
    CompileResult,
    ConfigError,
    ModalBindError,
)
from modalbind.utils import atomic_write_text, env_default

_cli_log = logging.getLogger("modalbind.cli")

EXIT_PROBLEMS = 3


def _console() -> Console:
    return Console(highlight=False)


def _short_text(value: object, *, width: int = 60) -> str:
    text = str(value)
    return text if len(text) <= width else text[: width - 3] + "..."


def _dump_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, sort_keys=True, default=str)


def _options(args: argparse.Namespace) -> CompileOptions:
    return CompileOptions(namespace=args.namespace, error_limit=args.error_limit)


def _compile(args: argparse.Namespace) -> CompileResult:
    return compile_file(args.file, options=_options(args))


def _format_commands(commands: Sequence[dict[str, Any]]) -> str:
    parts = []
    for command in commands:
        args = command.get("args") or command.get("computedArgs")
        if args:
            rendered = json.dumps(args, sort_keys=True, default=str)
            parts.append(f"{command['command']} {rendered}")
        else:
            parts.append(str(command["command"]))
    return "; ".join(parts)


def _render_problems(console: Console, problems: Sequence[str]) -> None:
    table = Table(title="Problems", box=box.SIMPLE)
    table.add_column("#", justify="right")
    table.add_column("Problem")
    for number, problem in enumerate(problems, start=1):
        table.add_row(str(number), escape(" ".join(problem.split())))
    if not problems:
        table.add_row("-", "<none>")
    console.print(table)


def _render_compile_table(result: CompileResult) -> None:
    console = _console()
    overview = Table(title="Compile Summary", show_header=False)
    overview.add_column("Field", style="bold cyan")
    overview.add_column("Value")
    overview.add_row("Name", result.name or "<unnamed>")
    overview.add_row("Modes", ", ".join(mode.name for mode in result.modes))
    overview.add_row("Bindings", str(len(result.bindings)))
    overview.add_row("Prefix Codes", str(len(result.prefix_codes.entries)))
    overview.add_row("Problems", str(len(result.problems)))
    overview.add_row(
        "Legacy Upgrade", str(bool(result.diagnostics.get("legacy_upgraded", False)))
    )
    if result.checksum:
        overview.add_row("Checksum", result.checksum)
    console.print(overview)

    table = Table(title="Bindings", box=box.SIMPLE_HEAVY)
    table.add_column("Decl", justify="right")
    table.add_column("Key", style="bold")
    table.add_column("Mode")
    table.add_column("Prefix")
    table.add_column("Name")
    table.add_column("Commands")
    for index, group in group_by_index(result.bindings).items():
        for binding in group:
            table.add_row(
                str(index),
                escape(binding.key),
                binding.mode or "<any>",
                escape(", ".join(binding.prefix_descriptions)) or "<any>",
                escape(str(binding.docs.get("name", ""))),
                escape(_short_text(_format_commands(binding.commands), width=80)),
            )
    if not result.bindings:
        table.add_row("-", "<none>", "", "", "", "")
    console.print(table)

    codes = Table(title="Prefix Codes")
    codes.add_column("Code", justify="right")
    codes.add_column("Prefix")
    for prefix, code in result.prefix_codes.entries:
        codes.add_row(str(code), escape(prefix) or "<empty>")
    console.print(codes)
    _render_problems(console, result.problems)


def _cmd_compile(args: argparse.Namespace) -> int:
    result = _compile(args)
    payload = result.to_json()
    if args.out:
        output_path = Path(args.out).expanduser().resolve()
        atomic_write_text(output_path, _dump_json(payload) + "\n")
        _cli_log.info("compile_written path=%s", output_path)
        if args.format == "json":
            print(json.dumps({"output_path": str(output_path)}, indent=2, sort_keys=True))
        else:
            _render_compile_table(result)
    elif args.format == "json":
        print(_dump_json(payload))
    else:
        _render_compile_table(result)
    if args.strict and result.problems:
        return EXIT_PROBLEMS
    return 0


def _cmd_validate(args: argparse.Namespace) -> int:
    result = _compile(args)
    if args.format == "json":
        print(
            json.dumps(
                {"problems": list(result.problems), "bindings": len(result.bindings)},
                indent=2,
                sort_keys=True,
            )
        )
    else:
        _render_problems(_console(), result.problems)
    return EXIT_PROBLEMS if result.problems else 0


def _cmd_upgrade(args: argparse.Namespace) -> int:
    document, _ = read_document(args.file)
    if not is_legacy(document):
        _cli_log.warning("upgrade_skipped path=%s reason=not_legacy", args.file)
    text = yaml.safe_dump(upgrade(document), sort_keys=False, default_flow_style=False)
    if args.out:
        output_path = Path(args.out).expanduser().resolve()
        atomic_write_text(output_path, text)
        print(json.dumps({"output_path": str(output_path)}, indent=2, sort_keys=True))
    else:
        print(text, end="")
    return 0


def _parse_var(raw: str) -> tuple[str, Any]:
    if "=" not in raw:
        raise ConfigError(f"--var expects NAME=VALUE, got '{raw}'")
    name, value = raw.split("=", 1)
    try:
        return name.strip(), yaml.safe_load(value)
    except yaml.YAMLError:
        return name.strip(), value


def _cmd_eval(args: argparse.Namespace) -> int:
    scope = dict(_parse_var(item) for item in args.var or [])
    evaluator = Evaluator(error_limit=args.error_limit)
    if args.template:
        print(evaluator.substitute_templates(args.expression, scope))
    else:
        value = evaluator.evaluate(args.expression, scope)
        if value is not UNDEFINED:
            print(value if isinstance(value, str) else json.dumps(value, default=str))
        else:
            print(format_value(value))
    errors = evaluator.report_errors()
    for error in errors:
        print(f"[expression error] {error}", file=sys.stderr)
    return 1 if errors else 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="modalbind", description="Modal keybinding compiler"
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="Increase log verbosity"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def _add_compile_args(target: argparse.ArgumentParser) -> None:
        target.add_argument("file", help="Binding file (.toml, .yaml, .yml or .json)")
        target.add_argument(
            "--namespace",
            default=env_default("MODALBIND_NAMESPACE", DEFAULT_NAMESPACE),
            help="Context namespace for mode, prefix and internal commands",
        )
        target.add_argument(
            "--error-limit",
            type=int,
            default=3,
            help="Expression errors reported per binding entry",
        )
        target.add_argument("--format", choices=["json", "table"], default="table")

    compile_cmd = sub.add_parser("compile", help="Compile a binding file")
    _add_compile_args(compile_cmd)
    compile_cmd.add_argument("--out", default=None, help="Write compiled JSON here")
    compile_cmd.add_argument(
        "--strict",
        action="store_true",
        help=f"Exit with status {EXIT_PROBLEMS} when problems are reported",
    )
    compile_cmd.set_defaults(handler=_cmd_compile)

    validate = sub.add_parser("validate", help="Report problems in a binding file")
    _add_compile_args(validate)
    validate.set_defaults(handler=_cmd_validate)

    upgrade_cmd = sub.add_parser(
        "upgrade", help="Rewrite a version 1 binding file in the current layout"
    )
    upgrade_cmd.add_argument("file")
    upgrade_cmd.add_argument("--out", default=None, help="Write upgraded YAML here")
    upgrade_cmd.set_defaults(handler=_cmd_upgrade)

    evaluate = sub.add_parser("eval", help="Evaluate a sandboxed expression")
    evaluate.add_argument("expression")
    evaluate.add_argument(
        "--var",
        action="append",
        default=None,
        help="Scope variable as NAME=VALUE (VALUE parsed as YAML, repeatable)",
    )
    evaluate.add_argument(
        "--template",
        action="store_true",
        help="Treat the input as text with {{...}} templates",
    )
    evaluate.add_argument("--error-limit", type=int, default=3)
    evaluate.set_defaults(handler=_cmd_eval)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    args = parser.parse_args(raw_argv)
    setup_logging(verbosity=args.verbose)
    command = str(getattr(args, "command", "unknown"))
    started = time.perf_counter()
    _cli_log.info("cli_command_start command=%s argv=%s", command, " ".join(raw_argv))

    exit_code = 1
    try:
        exit_code = int(args.handler(args))
    except ConfigError as exc:
        _cli_log.error("cli_command_error command=%s kind=config error=%s", command, exc)
        print(f"[config error] {exc}", file=sys.stderr)
        exit_code = 2
    except KeyboardInterrupt:
        _cli_log.error("cli_command_error command=%s kind=interrupted", command)
        print("\n[interrupted]", file=sys.stderr)
        exit_code = 130
    except (ModalBindError, RuntimeError) as exc:
        _cli_log.error("cli_command_error command=%s kind=runtime error=%s", command, exc)
        print(f"[runtime error] {exc}", file=sys.stderr)
        exit_code = 1
    except (OSError, ValueError) as exc:
        _cli_log.error(
            "cli_command_error command=%s kind=%s error=%s",
            command,
            type(exc).__name__,
            exc,
        )
        print(f"[error] {type(exc).__name__}: {exc}", file=sys.stderr)
        exit_code = 1
    finally:
        _cli_log.info(
            "cli_command_end command=%s exit_code=%s duration_sec=%.3f",
            command,
            exit_code,
            time.perf_counter() - started,
        )
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
