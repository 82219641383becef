"""
A printer for Packard tag trees and runtime values.
"""
from packard.packard_datatypes import (
    Identifier, NumberLiteral, StringLiteral, Keyword, Composite,
    Number, Text, Flag, Item, Reference, Token
)


def format_number(n: float) -> str:
    if float(n).is_integer():
        return str(int(n))
    return str(n)


class Printer:
    """Formats tags and values as one-line, source-like strings."""

    def __init__(self):
        self._handlers = self._create_handlers()

    def pformat(self, obj) -> str:
        """Public entry point to format an object."""
        handler = self._handlers.get(type(obj))
        if handler is None:
            return repr(obj)
        return handler(obj)

    def _create_handlers(self):
        return {
            Identifier: lambda o: o.name,
            NumberLiteral: lambda o: format_number(o.value),
            StringLiteral: lambda o: f'"{o.text}"',
            Keyword: lambda o: o.word,
            Composite: self._pformat_composite,
            Number: lambda o: format_number(o.value),
            Text: lambda o: f'"{o.value}"',
            Flag: lambda o: 'on' if o.value else 'off',
            Item: lambda o: 'item',
            Reference: lambda o: f'&{o.name}',
            Token: self._pformat_token,
            str: lambda o: o,
        }

    def _pformat_composite(self, node: Composite) -> str:
        # Explicit work stack: nesting on either side never hits the recursion limit.
        # Plain strings on the stack are literal output.
        parts = []
        stack = [node]
        while stack:
            item = stack.pop()
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, Composite):
                stack.extend(("]", item.right, ": ", item.left, "["))
            else:
                parts.append(self.pformat(item))
        return "".join(parts)

    def _pformat_token(self, tok: Token) -> str:
        if tok.value is None:
            return tok.kind.value
        if isinstance(tok.value, float):
            return format_number(tok.value)
        return str(tok.value)


_printer = Printer()


def pformat(obj) -> str:
    return _printer.pformat(obj)
