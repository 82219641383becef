"""
Defines the core data types for the Packard runtime.

This module provides the token and tag-tree node classes produced by the
front end, the runtime values the evaluator works with, the frame record
used for scoping, and the error taxonomy shared by every stage.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Union


# =================================================================
# Source positions and tokens
# =================================================================

@dataclass(frozen=True)
class Position:
    """A location in the source text (1-based line/column, 0-based offset)."""
    line: int
    column: int
    offset: int

    def as_dict(self) -> dict:
        return {'line': self.line, 'col': self.column, 'offset': self.offset}

    def __str__(self) -> str:
        return f"line {self.line}, col {self.column}"


class TokenKind(Enum):
    OPEN_BRACKET = "["
    CLOSE_BRACKET = "]"
    COLON = ":"
    COMMA = ","
    IDENTIFIER = "identifier"
    NUMBER = "number"
    STRING = "string"
    KEYWORD = "keyword"
    EOF = "end of input"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: Union[str, float, None]
    pos: Position

    def __repr__(self) -> str:
        if self.value is None:
            return f"Token({self.kind.name}, L{self.pos.line}:C{self.pos.column})"
        return f"Token({self.kind.name}, {self.value!r}, L{self.pos.line}:C{self.pos.column})"


# =================================================================
# Tag tree
# =================================================================

class TagNode:
    """Base class for every node of a parsed tag tree."""
    pos: Optional[Position]


class Primitive(TagNode):
    """A leaf node built directly from a single token."""

    def text_form(self) -> Optional[str]:
        """The text used when this primitive names an operation, if it has one."""
        return None


@dataclass(frozen=True)
class Identifier(Primitive):
    name: str
    pos: Optional[Position] = field(default=None, compare=False, repr=False)

    def text_form(self) -> Optional[str]:
        return self.name


@dataclass(frozen=True)
class NumberLiteral(Primitive):
    value: float
    pos: Optional[Position] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class StringLiteral(Primitive):
    text: str
    pos: Optional[Position] = field(default=None, compare=False, repr=False)

    def text_form(self) -> Optional[str]:
        return self.text


@dataclass(frozen=True)
class Keyword(Primitive):
    word: str
    pos: Optional[Position] = field(default=None, compare=False, repr=False)

    def text_form(self) -> Optional[str]:
        return self.word


@dataclass(frozen=True)
class Composite(TagNode):
    """A `[left : right]` tag. Owns both children; never mutated once built."""
    left: TagNode
    right: TagNode
    pos: Optional[Position] = field(default=None, compare=False, repr=False)


# =================================================================
# Runtime values
# =================================================================

class Value:
    """Abstract base class for runtime values."""
    pass


@dataclass(frozen=True)
class Number(Value):
    value: float


@dataclass(frozen=True)
class Text(Value):
    value: str


@dataclass(frozen=True)
class Flag(Value):
    value: bool


@dataclass(frozen=True)
class Item(Value):
    """The unit/placeholder value."""

    def __repr__(self) -> str:
        return "Item"


ITEM = Item()


@dataclass(frozen=True)
class Reference(Value):
    """Names a slot in some active frame; resolved by name at use time."""
    name: str


class Frame:
    """One scope record: attributes and variables are kept apart."""

    def __init__(self):
        self.variables: Dict[str, Value] = {}
        self.attributes: Dict[str, Value] = {}

    def __contains__(self, name: str) -> bool:
        return name in self.attributes or name in self.variables

    def get(self, name: str) -> Value:
        if name in self.attributes:
            return self.attributes[name]
        return self.variables[name]

    def overwrite(self, name: str, value: Value) -> None:
        """Rebind an existing name, preferring the attribute slot."""
        if name in self.attributes:
            self.attributes[name] = value
        elif name in self.variables:
            self.variables[name] = value
        else:
            raise KeyError(name)

    def __repr__(self) -> str:
        attrs = ', '.join(self.attributes.keys())
        vars_ = ', '.join(self.variables.keys())
        return f"<Frame attributes=[{attrs}] variables=[{vars_}]>"


# =================================================================
# Errors
# =================================================================

class PackardError(Exception):
    """Base class for every error raised by the lexer, parser or evaluator."""
    kind = "internal"

    def __init__(self, message: str, pos: Optional[Position] = None):
        super().__init__(message)
        self.message = message
        self.pos = pos


class LexError(PackardError):
    kind = "lex"


class ParseError(PackardError):
    """A structural error in the tag grammar, with nesting context."""
    kind = "parse"

    def __init__(self, message: str, pos: Optional[Position] = None, *,
                 depth: int = 0,
                 left_filled: Optional[bool] = None,
                 right_filled: Optional[bool] = None):
        self.reason = message
        self.depth = depth
        self.left_filled = left_filled
        self.right_filled = right_filled
        detail = f"{message} (depth {depth}"
        if left_filled is not None:
            detail += f", left {'filled' if left_filled else 'empty'}"
            detail += f", right {'filled' if right_filled else 'empty'}"
        detail += ")"
        super().__init__(detail, pos)


class ValidationError(PackardError):
    kind = "validation"

    def __init__(self, message: str, pos: Optional[Position] = None, *, name: Optional[str] = None):
        super().__init__(message, pos)
        self.name = name


class EvaluationError(PackardError):
    kind = "evaluation"


class ArgumentTypeError(EvaluationError):
    pass


class MalformedSetError(EvaluationError):
    pass


class UndefinedTargetError(EvaluationError):
    def __init__(self, name: str, pos: Optional[Position] = None, action: str = "assign to"):
        super().__init__(f"Cannot {action} undefined attribute/variable '{name}'", pos)
        self.name = name
