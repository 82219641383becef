"""
Turns Packard source text into a positioned token stream.

The token table is declarative (grammar/lexer.yaml) and is run through
koine's StatefulLexer; this module converts koine's tokens into typed
`Token` objects, decodes literal values, and appends the end marker.
"""
import re
from pathlib import Path
from typing import List, Optional

import yaml
from koine.parser import StatefulLexer

from packard.packard_datatypes import Token, TokenKind, Position, LexError

DEFAULT_GRAMMAR = Path(__file__).parent / "grammar" / "lexer.yaml"

_ESCAPES = {'n': '\n', 't': '\t', '\\': '\\', '"': '"', "'": "'"}
_KOINE_POS = re.compile(r"L(\d+):C(\d+)")


def decode_string(raw: str) -> str:
    """Strip the quotes from a string token and resolve backslash escapes."""
    body = raw[1:-1]
    out = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == '\\' and i + 1 < len(body):
            nxt = body[i + 1]
            out.append(_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        out.append(ch)
        i += 1
    return ''.join(out)


class _OffsetFinder:
    """Maps koine's (line, col) pairs back to offsets into the normalized text."""
    def __init__(self, text: str):
        self.text = text
        self.line_starts = [0] + [m.end() for m in re.finditer('\n', text)]

    def offset(self, line: int, col: int) -> int:
        return self.line_starts[line - 1] + col - 1

    def end(self) -> Position:
        line = len(self.line_starts)
        col = len(self.text) - self.line_starts[-1] + 1
        return Position(line, col, len(self.text))


class Lexer:
    """Tokenizes source text using the configured koine token table."""

    def __init__(self, grammar_path: Optional[str] = None, tab_width: int = 8):
        path = Path(grammar_path) if grammar_path else DEFAULT_GRAMMAR
        with path.open(encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
        self.tab_width = tab_width
        self._lexer = StatefulLexer(config, tab_width=tab_width)

    def normalize(self, text: str) -> str:
        # Mirrors the normalization koine applies before matching.
        return text.replace('\r\n', '\n').replace('\r', '\n').expandtabs(self.tab_width)

    def tokenize(self, text: str) -> List[Token]:
        normalized = self.normalize(text)
        finder = _OffsetFinder(normalized)
        try:
            raw_tokens = self._lexer.tokenize(normalized)
        except SyntaxError as e:
            msg = str(e)
            pos = None
            m = _KOINE_POS.search(msg)
            if m:
                line, col = int(m.group(1)), int(m.group(2))
                pos = Position(line, col, finder.offset(line, col))
                bad = normalized[pos.offset:pos.offset + 1]
                if bad in ('"', "'"):
                    msg = f"Unterminated string starting at {pos}"
                elif normalized.startswith('/*', pos.offset):
                    msg = f"Unclosed block comment starting at {pos}"
                else:
                    msg = f"Unexpected character {bad!r} at {pos}"
            raise LexError(msg, pos) from e

        tokens = []
        for raw in raw_tokens:
            kind = TokenKind[raw.type]
            pos = Position(raw.line, raw.col, finder.offset(raw.line, raw.col))
            match kind:
                case TokenKind.NUMBER:
                    value = float(raw.value)
                case TokenKind.STRING:
                    value = decode_string(raw.value)
                case TokenKind.IDENTIFIER | TokenKind.KEYWORD:
                    value = raw.value
                case _:
                    value = None
            tokens.append(Token(kind, value, pos))
        tokens.append(Token(TokenKind.EOF, None, finder.end()))
        return tokens


_default_lexer: Optional[Lexer] = None


def tokenize(text: str) -> List[Token]:
    """Tokenize with the bundled token table (the lexer is built once and cached)."""
    global _default_lexer
    if _default_lexer is None:
        _default_lexer = Lexer()
    return _default_lexer.tokenize(text)
