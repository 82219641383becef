# packard_runtime.py

import os
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from packard.packard_datatypes import PackardError, Position, Value
from packard.packard_evaluator import Evaluator
from packard.packard_lexer import Lexer
from packard.packard_parser import StreamingParser
from packard.packard_printer import pformat
from packard.packard_trace import Observer, TraceWriter, NULL_OBSERVER


# ===================================================================
# Script Execution
# ===================================================================

ErrorLocation = Dict[str, Any]


@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: Optional[Value] = None
    store: Dict[str, Value] = field(default_factory=dict)
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    error_token: Optional[ErrorLocation] = None
    side_effects: List[Dict] = field(default_factory=list)

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")

        # Add a location prefix when we have a token; avoid duplicating the same prefix
        if self.error_token and 'line' in self.error_token:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            if not msg.startswith("Error on line "):
                col_info = f", col {col}" if col is not None else ""
                return f"Error on line {line}{col_info}: {msg}"
        return msg


class ScriptRunner:
    """Lexes, parses, validates and executes Packard source."""

    _lexer: Optional[Lexer] = None

    def __init__(self, observer: Optional[Observer] = None,
                 trace_path: Optional[str] = None,
                 variables: Optional[Dict[str, Value]] = None):
        if ScriptRunner._lexer is None:
            ScriptRunner._lexer = Lexer()
        self.lexer = ScriptRunner._lexer

        if observer is None and trace_path:
            observer = TraceWriter(trace_path)
        self.observer = observer or NULL_OBSERVER
        self.variables: Dict[str, Value] = dict(variables or {})
        self.evaluator: Optional[Evaluator] = None
        self.side_effects: List[Dict] = []

    def _debugging(self) -> bool:
        return bool(os.environ.get("PACKARD_DEBUG"))

    def _dbg(self, *parts):
        if self._debugging():
            print("[DBG]", *parts, file=sys.stderr)

    def _source_context(self, source: str, line: int, col: Optional[int], radius: int = 2) -> str:
        lines = source.splitlines()
        if not line or line < 1 or line > len(lines):
            return ""
        start = max(1, line - radius)
        end = min(len(lines), line + radius)
        width = len(str(end))
        out = []
        for i in range(start, end + 1):
            prefix = ">" if i == line else " "
            ln = str(i).rjust(width)
            content = lines[i - 1]
            out.append(f"{prefix} {ln} | {content}")
            if i == line and col is not None:
                caret = " " * max(col - 1, 0)
                out.append(f"  {' ' * width} | {caret}^")
        return "\n".join(out)

    def _format_error(self, e: Exception, source: str, node) -> tuple[str, Optional[ErrorLocation]]:
        match e:
            case PackardError():
                label = {
                    'lex': "LexError",
                    'parse': "ParseError",
                    'validation': "ValidationError",
                    'evaluation': type(e).__name__,
                }.get(e.kind, "InternalError")
                msg = f"{label}: {e.message}"
                pos: Optional[Position] = e.pos
            case RecursionError():
                msg = "InternalError: tag tree nested too deeply to evaluate"
                pos = None
            case _:
                msg = f"InternalError: {e}"
                pos = None

        # Execution errors raised by handlers carry no position; fall back to the node being run
        if pos is None and node is not None:
            pos = getattr(node, 'pos', None)
            if pos is not None:
                msg = f"{msg}\nAt tag {pformat(node)}"

        token = None
        if pos is not None:
            token = pos.as_dict()
            context = self._source_context(source, pos.line, pos.column)
            if context:
                msg = f"{msg}\n{context}"
        return msg, token

    def _finish_trace(self):
        self.observer.close()
        # The trace is best effort: report a dead destination, never fail the run.
        error = getattr(self.observer, 'error', None)
        if error is not None:
            self.side_effects.append({
                'topics': ['stderr'],
                'message': f"Warning: trace unavailable ({error})",
            })

    def handle_script(self, source_code: str) -> ExecutionResult:
        """The main entry point to execute a script."""
        self.side_effects = []
        self.evaluator = Evaluator(self.observer)
        for name, value in self.variables.items():
            self.evaluator.declare_variable(name, value)
        stage = 'lex'
        try:
            tokens = self.lexer.tokenize(source_code)
            self._dbg("tokens:", len(tokens))

            stage = 'parse'
            root = StreamingParser(tokens, self.observer).parse()
            if self._debugging():
                self._dbg("tree:", pformat(root))

            stage = 'evaluate'
            value = self.evaluator.execute_root(root)
            self._finish_trace()
            return ExecutionResult(
                status='success',
                value=value,
                store=dict(self.evaluator.store),
                side_effects=self.side_effects,
            )

        except Exception as e:
            node = self.evaluator.current_node if stage == 'evaluate' else None
            err_msg, err_token = self._format_error(e, source_code, node)
            self._dbg("failed during", stage, repr(e))
            self._finish_trace()
            # Emit consolidated stderr side-effect
            self.side_effects.append({'topics': ['stderr'], 'message': err_msg})
            return ExecutionResult(
                status='error',
                store=dict(self.evaluator.store),
                error_kind=e.kind if isinstance(e, PackardError) else 'internal',
                error_message=err_msg,
                error_token=err_token,
                side_effects=self.side_effects,
            )
