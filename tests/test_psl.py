import importlib.util
import json
import sys
from pathlib import Path
import uuid
import pytest


def _load_cli_module():
    """Dynamically load the top-level psl.py (runner + REPL) as a module with a unique name."""
    cli_path = Path(__file__).resolve().parents[1] / "psl.py"
    mod_name = f"psl_cli_for_test_{uuid.uuid4().hex}"
    spec = importlib.util.spec_from_file_location(mod_name, str(cli_path))
    mod = importlib.util.module_from_spec(spec)
    sys.modules[mod_name] = mod
    assert spec.loader is not None
    spec.loader.exec_module(mod)
    return mod


def _feed(monkeypatch, cli, lines):
    it = iter(lines)

    def fake_read_line(prompt: str) -> str:
        return next(it)
    monkeypatch.setattr(cli, "read_line", fake_read_line)


def test_repl_exit_immediately(monkeypatch, capsys):
    cli = _load_cli_module()
    _feed(monkeypatch, cli, ["exit"])

    cli.main([])
    out = capsys.readouterr().out
    assert "Packard REPL v0.1" in out
    assert "Type 'exit' or press Ctrl+D to quit." in out


def test_repl_prints_values_and_store(monkeypatch, capsys):
    cli = _load_cli_module()
    _feed(monkeypatch, cli, [
        '[character:[text:"Alice"]]\n',
        "\n",
        "[number:3]\n",
        "exit\n",
    ])

    cli.main([])
    out, err = capsys.readouterr()
    assert '"character:Alice"' in out
    assert "  Alice = item" in out
    # Each line is its own program: the store does not carry over
    assert out.rstrip().endswith("3")
    assert err == ""


def test_repl_errors_print_to_stderr(monkeypatch, capsys):
    cli = _load_cli_module()
    _feed(monkeypatch, cli, ["[frob:1]", "exit"])

    cli.main([])
    out, err = capsys.readouterr()
    assert "Packard REPL v0.1" in out
    assert "ValidationError: Unknown operation 'frob'" in err


def test_repl_eof_quits(monkeypatch, capsys):
    cli = _load_cli_module()

    def fake_read_line(prompt: str) -> str:
        return ""
    monkeypatch.setattr(cli, "read_line", fake_read_line)

    cli.main([])
    out = capsys.readouterr().out
    assert "Exiting." in out


def test_run_script_file_text(tmp_path, capsys):
    cli = _load_cli_module()
    script = tmp_path / "hero.psl"
    script.write_text('[character:[text:"Alice"]]\n[character:[text:"Bob"]]\n', encoding="utf-8")

    cli.main([str(script)])
    out = capsys.readouterr().out.splitlines()
    assert out == ['"character:Bob"', "  Alice = item", "  Bob = item"]


def test_run_script_file_json(tmp_path, capsys):
    cli = _load_cli_module()
    script = tmp_path / "hero.psl"
    script.write_text('[character:[text:"Alice"]]', encoding="utf-8")

    cli.main([str(script), "--format", "json"])
    out = json.loads(capsys.readouterr().out)
    assert out == {"value": "character:Alice", "store": {"Alice": None}}


def test_run_script_file_with_trace(tmp_path, capsys):
    cli = _load_cli_module()
    script = tmp_path / "hero.psl"
    script.write_text("[flag:on]", encoding="utf-8")
    trace = tmp_path / "trace.log"

    cli.main([str(script), "--trace", str(trace)])
    assert capsys.readouterr().out.strip() == "on"
    assert "=== Evaluation Complete: on ===" in trace.read_text(encoding="utf-8")


def test_trace_path_from_environment(tmp_path, monkeypatch, capsys):
    cli = _load_cli_module()
    trace = tmp_path / "env.log"
    monkeypatch.setenv("PACKARD_TRACE", str(trace))
    assert cli.parse_args([])["trace"] == str(trace)


def test_run_script_file_error_exits_nonzero(tmp_path, capsys):
    cli = _load_cli_module()
    script = tmp_path / "bad.psl"
    script.write_text("[a:b", encoding="utf-8")

    with pytest.raises(SystemExit) as exc:
        cli.main([str(script)])
    assert exc.value.code == 1
    err = capsys.readouterr().err
    assert "ParseError: Unexpected end of input inside 1 open tag(s)" in err
    assert "Error on line 1, col 5" in err


def test_missing_file(tmp_path, capsys):
    cli = _load_cli_module()
    with pytest.raises(SystemExit) as exc:
        cli.main([str(tmp_path / "nope.psl")])
    assert exc.value.code == 1
    assert "Error: file not found" in capsys.readouterr().err


@pytest.mark.parametrize("argv", [
    ["--format", "xml"],
    ["--trace"],
    ["--bogus"],
    ["a.psl", "b.psl"],
])
def test_bad_arguments(argv, capsys):
    cli = _load_cli_module()
    with pytest.raises(SystemExit) as exc:
        cli.parse_args(argv)
    assert exc.value.code == 2
    assert "usage: psl.py" in capsys.readouterr().err
