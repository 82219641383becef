import pytest

from packard.packard_datatypes import Number, Text, ITEM
from packard.packard_evaluator import Evaluator
from packard.packard_runtime import ScriptRunner, ExecutionResult
from packard.packard_trace import TraceRecorder


@pytest.fixture
def runner():
    return ScriptRunner()


def test_success_result(runner):
    result = runner.handle_script('[character:[text:"Alice"]]')
    assert result.status == 'success'
    assert result.value == Text("character:Alice")
    assert result.store == {"Alice": ITEM}
    assert result.side_effects == []
    assert result.error_kind is None
    assert result.format_error() == ""


def test_each_run_gets_a_fresh_store(runner):
    runner.handle_script('[character:[text:"A"]]')
    result = runner.handle_script('[character:[text:"B"]]')
    assert result.store == {"B": ITEM}


@pytest.mark.parametrize("src, kind, label", [
    ("[a:#]", "lex", "LexError: Unexpected character '#'"),
    ("[a]", "parse", "ParseError: Incomplete tag opened at line 1, col 1"),
    ("[frob:1]", "validation", "ValidationError: Unknown operation 'frob'"),
    ("[character:[number:1]]", "evaluation", "ArgumentTypeError: character name must be text, got 1"),
    ('[set:[attribute:[text:"x"]]]', "evaluation", "MalformedSetError: set needs a value"),
])
def test_error_kinds(runner, src, kind, label):
    result = runner.handle_script(src)
    assert result.status == 'error'
    assert result.error_kind == kind
    assert result.error_message.startswith(label)
    assert result.side_effects[-1] == {'topics': ['stderr'], 'message': result.error_message}


def test_error_message_has_source_context(runner):
    result = runner.handle_script("[a:b]\n[c:#]\n[d:e]")
    assert result.error_token == {'line': 2, 'col': 4, 'offset': 9}
    lines = result.error_message.splitlines()
    # The location is stated once in the message, then shown by the excerpt
    assert result.error_message.count("line 2, col 4") == 1
    assert "> 2 | [c:#]" in lines
    assert "    |    ^" in lines
    assert result.format_error().startswith("Error on line 2, col 4: LexError:")


def test_handler_error_points_at_running_tag(runner):
    result = runner.handle_script('\n  [character:[number:1]]')
    assert result.error_token['line'] == 2
    assert result.error_token['col'] == 3
    assert "At tag [character: [number: 1]]" in result.error_message


def test_execution_error_keeps_earlier_store_entries(runner):
    result = runner.handle_script('[character:[text:"A"]] [character:[number:1]]')
    assert result.status == 'error'
    assert result.store == {"A": ITEM}


def test_validation_error_keeps_store_empty(runner):
    result = runner.handle_script('[character:[text:"A"]] [nope:1]')
    assert result.error_kind == 'validation'
    assert result.store == {}


def test_unexpected_exception_is_internal(runner, monkeypatch):
    def boom(self, root):
        raise RuntimeError("boom")
    monkeypatch.setattr(Evaluator, "execute_root", boom)
    result = runner.handle_script("[text:x]")
    assert result.status == 'error'
    assert result.error_kind == 'internal'
    assert result.error_message.startswith("InternalError: boom")
    assert result.error_token is None


def test_too_deep_to_evaluate_is_internal(runner):
    depth = 5000
    src = "[text:" * depth + "1" + "]" * depth
    result = runner.handle_script(src)
    assert result.status == 'error'
    assert result.error_kind == 'internal'
    assert result.error_message.startswith("InternalError: tag tree nested too deeply to evaluate")


def test_seeded_variables():
    runner = ScriptRunner(variables={"hp": Number(10.0)})
    result = runner.handle_script("[text:x]")
    assert result.status == 'success'
    assert runner.evaluator.frames[0].variables == {"hp": Number(10.0)}


def test_injected_observer_sees_parse_and_eval():
    rec = TraceRecorder()
    ScriptRunner(observer=rec).handle_script("[flag:on]")
    names = [e for e, _ in rec.records]
    assert names[0] == "parse-begin"
    assert "validate" in names
    assert names[-1] == "eval-end"


def test_trace_file_is_written(tmp_path):
    path = tmp_path / "trace.log"
    result = ScriptRunner(trace_path=str(path)).handle_script('[character:[text:"Alice"]]')
    assert result.status == 'success'
    text = path.read_text(encoding="utf-8")
    assert text.startswith("=== Parse Trace ===")
    assert '[Eval 5] Primitive: "Alice" => "Alice"' in text
    assert '=== Evaluation Complete: "character:Alice" ===' in text


def test_trace_failure_does_not_change_outcome(tmp_path):
    # A directory cannot be opened for appending
    result = ScriptRunner(trace_path=str(tmp_path)).handle_script('[character:[text:"Alice"]]')
    assert result.status == 'success'
    assert result.value == Text("character:Alice")
    warnings = [e['message'] for e in result.side_effects if e['topics'] == ['stderr']]
    assert len(warnings) == 1
    assert warnings[0].startswith("Warning: trace unavailable")


def test_debug_prints(monkeypatch, capsys, runner):
    monkeypatch.setenv("PACKARD_DEBUG", "1")
    runner.handle_script("[text:x]")
    err = capsys.readouterr().err
    assert "[DBG] tokens: 6" in err


def test_format_error_without_token():
    result = ExecutionResult(status='error', error_message="InternalError: boom")
    assert result.format_error() == "InternalError: boom"


def test_unicode_identifiers(runner):
    result = runner.handle_script("[text:café]")
    assert result.status == 'success'
    assert result.value == Text("café")


def test_tree_is_only_printed_when_debugging(runner, monkeypatch, capsys):
    calls = []

    def counting_pformat(obj):
        calls.append(obj)
        return "<tree>"
    monkeypatch.setattr("packard.packard_runtime.pformat", counting_pformat)
    monkeypatch.delenv("PACKARD_DEBUG", raising=False)
    assert runner.handle_script("[text:x]").status == 'success'
    assert calls == []

    monkeypatch.setenv("PACKARD_DEBUG", "1")
    runner.handle_script("[text:x]")
    assert len(calls) == 1
    assert "[DBG] tree: <tree>" in capsys.readouterr().err


def test_deep_left_nesting_fails_in_evaluation_not_parsing():
    depth = 1500
    src = "[" * (depth - 1) + "[text:1]" + ":1]" * (depth - 1)
    rec = TraceRecorder()
    result = ScriptRunner(observer=rec).handle_script(src)
    assert rec.events("parse-end")[0]["count"] == 1
    assert rec.events("validate") != []
    assert result.error_kind == 'internal'
    assert result.error_message.startswith("InternalError: tag tree nested too deeply to evaluate")
