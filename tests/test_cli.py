from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from modalbind._logging import setup_logging
from modalbind.cli import EXIT_PROBLEMS, main


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content.strip() + "\n", encoding="utf-8")


@pytest.fixture
def bindings_file(tmp_path: Path) -> Path:
    path = tmp_path / "bindings.yaml"
    _write(
        path,
        """
header:
  version: "2.0"
  name: demo
mode:
  - name: normal
    default: true
  - name: insert
default:
  - id: motion
    default:
      mode: normal
      command: cursorMove
bind:
  - key: h
    defaults: motion
    args: {to: left}
  - key: g g
    command: cursorTop
""",
    )
    return path


@pytest.fixture
def duplicate_file(tmp_path: Path) -> Path:
    path = tmp_path / "dupes.json"
    path.write_text(
        json.dumps(
            {
                "header": {"version": "2.0"},
                "bind": [
                    {"key": "x", "command": "first"},
                    {"key": "x", "command": "second"},
                ],
            }
        ),
        encoding="utf-8",
    )
    return path


def test_compile_json_output(bindings_file: Path, capsys) -> None:
    code = main(["compile", str(bindings_file), "--format", "json", "--namespace", "mk"])
    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["name"] == "demo"
    assert payload["problems"] == []
    assert [binding["key"] for binding in payload["bindings"]] == ["h", "g", "g"]
    assert payload["prefix_codes"] == {"": 0, "g": 1}
    assert payload["bindings"][0]["when"] == "(mk.mode == 'normal') && (mk.prefixCode == 0)"
    assert payload["checksum"]


def test_compile_table_output(bindings_file: Path, capsys) -> None:
    assert main(["compile", str(bindings_file)]) == 0
    out = capsys.readouterr().out
    assert "Compile Summary" in out
    assert "Bindings" in out
    assert "cursorTop" in out


def test_compile_writes_output_file(bindings_file: Path, tmp_path: Path, capsys) -> None:
    out_path = tmp_path / "out" / "compiled.json"
    code = main(
        ["compile", str(bindings_file), "--format", "json", "--out", str(out_path)]
    )
    assert code == 0
    assert json.loads(capsys.readouterr().out) == {"output_path": str(out_path.resolve())}
    written = json.loads(out_path.read_text(encoding="utf-8"))
    assert len(written["bindings"]) == 3


def test_strict_compile_fails_on_problems(duplicate_file: Path, capsys) -> None:
    assert main(["compile", str(duplicate_file), "--format", "json"]) == 0
    capsys.readouterr()
    assert main(["compile", str(duplicate_file), "--format", "json", "--strict"]) == EXIT_PROBLEMS


def test_validate_reports_problems(duplicate_file: Path, bindings_file: Path, capsys) -> None:
    assert main(["validate", str(duplicate_file), "--format", "json"]) == EXIT_PROBLEMS
    payload = json.loads(capsys.readouterr().out)
    assert payload["problems"] == ["Duplicate bindings for 'x' in mode 'default'"]
    assert main(["validate", str(bindings_file)]) == 0


def test_config_errors_exit_with_two(tmp_path: Path, capsys) -> None:
    path = tmp_path / "bad.yaml"
    _write(path, "header:\n  version: '9.0'\nbind: []")
    assert main(["compile", str(path)]) == 2
    assert "[config error]" in capsys.readouterr().err

    unsupported = tmp_path / "bindings.ini"
    _write(unsupported, "[header]")
    assert main(["validate", str(unsupported)]) == 2


def test_missing_file_exits_with_one(tmp_path: Path, capsys) -> None:
    assert main(["compile", str(tmp_path / "absent.yaml")]) == 1
    assert "FileNotFoundError" in capsys.readouterr().err


def test_upgrade_writes_current_layout(tmp_path: Path, capsys) -> None:
    legacy = tmp_path / "old.yaml"
    _write(
        legacy,
        """
header:
  version: "1.0"
bind:
  - key: x
    command: c
    repeat: count
""",
    )
    out_path = tmp_path / "new.yaml"
    assert main(["upgrade", str(legacy), "--out", str(out_path)]) == 0
    upgraded = yaml.safe_load(out_path.read_text(encoding="utf-8"))
    assert upgraded["header"]["version"] == "2.0"
    assert upgraded["bind"][0] == {"key": "x", "command": "c", "computedRepeat": "count"}

    assert main(["compile", str(out_path), "--format", "json"]) == 0


def test_eval_command(capsys) -> None:
    assert main(["eval", "2+2"]) == 0
    assert capsys.readouterr().out.strip() == "4"

    assert main(["eval", "n * 2", "--var", "n=3"]) == 0
    assert capsys.readouterr().out.strip() == "6"

    assert main(["eval", "move {{n}}", "--template", "--var", "n=left"]) == 0
    assert capsys.readouterr().out.strip() == "move left"

    assert main(["eval", "x = 1"]) == 1
    assert "expressions cannot assign" in capsys.readouterr().err


def test_log_file_records_commands(
    bindings_file: Path, tmp_path: Path, monkeypatch, capsys
) -> None:
    log_path = tmp_path / "logs" / "modalbind.log"
    monkeypatch.setenv("MODALBIND_LOG_FILE", str(log_path))
    assert main(["validate", str(bindings_file)]) == 0
    text = log_path.read_text(encoding="utf-8")
    assert "cli_command_start command=validate" in text
    assert "compile_done" in text
    assert "cli_command_end command=validate exit_code=0" in text

    monkeypatch.delenv("MODALBIND_LOG_FILE")
    setup_logging()


def test_compile_json_output_with_toml_dates(tmp_path: Path, capsys) -> None:
    path = tmp_path / "dated.toml"
    _write(
        path,
        """
[header]
version = "2.0"

[[bind]]
key = "d"
command = "insertDate"
args = { when = 1979-05-27 }
""",
    )
    assert main(["compile", str(path), "--format", "json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    (binding,) = payload["bindings"]
    assert binding["commands"][0]["args"] == {"when": "1979-05-27"}
