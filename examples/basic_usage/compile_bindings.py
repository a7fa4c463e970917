#!/usr/bin/env python3
from __future__ import annotations

import argparse
from pathlib import Path

from modalbind import CompileOptions, compile_file, group_by_index


def main() -> int:
    parser = argparse.ArgumentParser(description="Compile the example binding file")
    parser.add_argument(
        "--file", default=str(Path(__file__).with_name("vim_basics.toml"))
    )
    parser.add_argument("--namespace", default="master-key")
    args = parser.parse_args()

    result = compile_file(args.file, options=CompileOptions(namespace=args.namespace))
    for index, bindings in group_by_index(result.bindings).items():
        keys = ", ".join(f"{b.key}/{b.mode}" for b in bindings)
        print(f"[{index}] {keys}")
    for problem in result.problems:
        print(f"problem: {problem}")
    return 1 if result.problems else 0


if __name__ == "__main__":
    raise SystemExit(main())
