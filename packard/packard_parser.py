"""
The streaming tag parser: token stream -> one normalized tag tree.

Tags are assembled bottom-up on an explicit stack of tags-in-progress, so
nesting depth is bounded by memory rather than by the interpreter's
recursion limit. Every complete top-level tag is then folded into a single
`[root : [list : ...]]` tree.
"""
from enum import Enum
from typing import Iterable, List, Optional

from packard.packard_datatypes import (
    Token, TokenKind, Position, ParseError,
    TagNode, Composite, Identifier, NumberLiteral, StringLiteral, Keyword
)
from packard.packard_printer import pformat
from packard.packard_trace import Observer, NULL_OBSERVER


class ParseState(Enum):
    AWAITING_LEFT = "left"
    AWAITING_RIGHT = "right"


class TagInProgress:
    """An opened `[` whose closing `]` has not been seen yet."""

    def __init__(self, pos: Position):
        self.state = ParseState.AWAITING_LEFT
        self.left: Optional[TagNode] = None
        self.right: Optional[TagNode] = None
        self.pos = pos

    def is_complete(self) -> bool:
        return self.left is not None and self.right is not None

    def to_composite(self) -> Composite:
        return Composite(self.left, self.right, pos=self.pos)


# --- Top-level normalization ---

def make_list(tags: List[TagNode]) -> Composite:
    """Wrap top-level tags as `[list : ...]`, chaining several tags right-nested."""
    if not tags:
        return Composite(Keyword("list"), Keyword("item"))
    chain = tags[-1]
    for tag in reversed(tags[:-1]):
        chain = Composite(tag, chain, pos=tag.pos)
    return Composite(Keyword("list"), chain)


def make_root(tags: List[TagNode]) -> Composite:
    return Composite(Keyword("root"), make_list(tags))


def primitive_from_token(tok: Token) -> TagNode:
    match tok.kind:
        case TokenKind.IDENTIFIER:
            return Identifier(tok.value, pos=tok.pos)
        case TokenKind.NUMBER:
            return NumberLiteral(tok.value, pos=tok.pos)
        case TokenKind.STRING:
            return StringLiteral(tok.value, pos=tok.pos)
        case TokenKind.KEYWORD:
            return Keyword(tok.value, pos=tok.pos)
    raise TypeError(f"Token {tok!r} is not a primitive")


_PRIMITIVE_KINDS = (TokenKind.IDENTIFIER, TokenKind.NUMBER, TokenKind.STRING, TokenKind.KEYWORD)


class StreamingParser:
    """Consumes a token stream and produces the root tag tree."""

    def __init__(self, tokens: Iterable[Token], observer: Optional[Observer] = None):
        self.tokens = list(tokens)
        self.observer = observer or NULL_OBSERVER
        self.tracing = self.observer is not NULL_OBSERVER
        self.tag_stack: List[TagInProgress] = []

    # --- Error helpers ---

    def _error(self, message: str, pos: Optional[Position]) -> ParseError:
        depth = len(self.tag_stack)
        if self.tag_stack:
            top = self.tag_stack[-1]
            return ParseError(message, pos, depth=depth,
                              left_filled=top.left is not None,
                              right_filled=top.right is not None)
        return ParseError(message, pos, depth=depth)

    def _end_position(self) -> Position:
        if self.tokens:
            return self.tokens[-1].pos
        return Position(1, 1, 0)

    # --- Stack operations ---

    def _fill(self, node: TagNode, pos: Optional[Position]):
        current = self.tag_stack[-1]
        slot = current.state.value
        if getattr(current, slot) is not None:
            raise self._error(
                f"Slot already filled: {slot} side of the tag opened at {current.pos}", pos)
        setattr(current, slot, node)
        if self.tracing:
            self.observer.record("slot-fill", {
                "slot": slot,
                "node": pformat(node),
                "indent": "  " * (len(self.tag_stack) - 1),
            })

    def _open(self, tok: Token):
        self.tag_stack.append(TagInProgress(tok.pos))
        if self.tracing:
            self.observer.record("tag-open", {
                "line": tok.pos.line,
                "col": tok.pos.column,
                "depth": len(self.tag_stack),
                "indent": "  " * (len(self.tag_stack) - 1),
            })

    def _close(self, tok: Token) -> Optional[Composite]:
        """Pops the current tag; returns it when it was a top-level tag."""
        if not self.tag_stack:
            raise self._error("Unexpected ']' with no open tag", tok.pos)
        current = self.tag_stack[-1]
        if not current.is_complete():
            raise self._error(f"Incomplete tag opened at {current.pos}", tok.pos)
        self.tag_stack.pop()
        node = current.to_composite()
        if self.tracing:
            self.observer.record("tag-close", {
                "node": pformat(node),
                "depth": len(self.tag_stack) + 1,
                "indent": "  " * len(self.tag_stack),
            })
        if self.tag_stack:
            self._fill(node, tok.pos)
            return None
        return node

    # --- Entry points ---

    def parse_tags(self) -> List[Composite]:
        """Parses every top-level tag without normalizing them."""
        self.tag_stack = []
        tags: List[Composite] = []
        self.observer.record("parse-begin", {"tokens": len(self.tokens)})
        end_pos = self._end_position()

        for tok in self.tokens:
            match tok.kind:
                case TokenKind.EOF:
                    end_pos = tok.pos
                    break
                case TokenKind.COMMA:
                    continue
                case TokenKind.OPEN_BRACKET:
                    self._open(tok)
                case TokenKind.CLOSE_BRACKET:
                    done = self._close(tok)
                    if done is not None:
                        tags.append(done)
                case TokenKind.COLON:
                    if not self.tag_stack:
                        raise self._error("Expected '[' but found ':'", tok.pos)
                    current = self.tag_stack[-1]
                    if current.left is None:
                        raise self._error("Missing left side before ':'", tok.pos)
                    current.state = ParseState.AWAITING_RIGHT
                case kind if kind in _PRIMITIVE_KINDS:
                    if not self.tag_stack:
                        raise self._error(
                            f"Expected '[' but found {kind.value} {pformat(tok)!r}", tok.pos)
                    self._fill(primitive_from_token(tok), tok.pos)

        if self.tag_stack:
            raise self._error(
                f"Unexpected end of input inside {len(self.tag_stack)} open tag(s)", end_pos)
        return tags

    def parse(self) -> Composite:
        tags = self.parse_tags()
        root = make_root(tags)
        if self.tracing:
            self.observer.record("parse-end", {"count": len(tags), "tree": pformat(root)})
        return root


def parse(tokens: Iterable[Token], observer: Optional[Observer] = None) -> Composite:
    return StreamingParser(tokens, observer).parse()
