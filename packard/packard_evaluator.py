"""
The Packard evaluator: validation, frames, and operation dispatch.

A run has two phases. `validate` walks the whole tree and resolves every
composite's operation name to an `Operation` member, failing before any
state changes. Execution then walks the tree again, dispatching on those
members through the fixed `HANDLERS` table.
"""
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from packard.packard_datatypes import (
    TagNode, Primitive, Composite, Identifier, NumberLiteral, StringLiteral, Keyword,
    Value, Number, Text, Flag, ITEM, Reference, Frame,
    ValidationError, ArgumentTypeError, MalformedSetError, UndefinedTargetError
)
from packard.packard_printer import pformat
from packard.packard_trace import Observer, NULL_OBSERVER


class Operation(Enum):
    DEFINE = "define"
    SET = "set"
    CHARACTER = "character"
    ATTRIBUTE = "attribute"
    TEXT = "text"
    NUMBER = "number"
    FLAG = "flag"
    ITEM = "item"
    LIST = "list"
    ROOT = "root"


_OPERATIONS_BY_NAME = {op.value: op for op in Operation}


def operation_name(node: Composite) -> Tuple[Optional[str], Primitive]:
    """Follows left sides down to a primitive; returns its text form and the primitive."""
    cur = node.left
    while isinstance(cur, Composite):
        cur = cur.left
    return cur.text_form(), cur


def evaluate_primitive(prim: Primitive) -> Value:
    match prim:
        case Identifier(name=name):
            return Text(name)
        case NumberLiteral(value=value):
            return Number(value)
        case StringLiteral(text=text):
            return Text(text)
        case Keyword(word="on"):
            return Flag(True)
        case Keyword(word="off"):
            return Flag(False)
        case Keyword(word=word):
            return Text(word)
    raise TypeError(f"Not a primitive: {prim!r}")


def _is_set_head(node: TagNode) -> bool:
    return (isinstance(node, Composite)
            and isinstance(node.left, Primitive)
            and node.left.text_form() == Operation.SET.value)


# =================================================================
# Handlers
# =================================================================

def handle_character(ev: 'Evaluator', arg: Value) -> Value:
    if not isinstance(arg, Text):
        raise ArgumentTypeError(f"character name must be text, got {pformat(arg)}")
    ev.store[arg.value] = ITEM
    if ev.tracing:
        ev.observer.record("store", {"id": ev.eval_counter, "name": arg.value, "value": pformat(ITEM)})
    return Text(f"character:{arg.value}")


def handle_attribute(ev: 'Evaluator', arg: Value) -> Value:
    if not isinstance(arg, Text):
        raise ArgumentTypeError(f"attribute name must be text, got {pformat(arg)}")
    name = arg.value
    # Declared once anywhere visible: an enclosing declaration is reused, not shadowed.
    if not ev.attribute_visible(name):
        ev.current_frame.attributes[name] = ITEM
    return Reference(name)


def handle_identity(ev: 'Evaluator', arg: Value) -> Value:
    return arg


def handle_item(ev: 'Evaluator', arg: Value) -> Value:
    return ITEM


HANDLERS: Dict[Operation, Callable[['Evaluator', Value], Value]] = {
    Operation.CHARACTER: handle_character,
    Operation.ATTRIBUTE: handle_attribute,
    Operation.TEXT: handle_identity,
    Operation.NUMBER: handle_identity,
    Operation.FLAG: handle_identity,
    Operation.ITEM: handle_item,
    Operation.LIST: handle_identity,
    Operation.ROOT: handle_identity,
}


# =================================================================
# Evaluator
# =================================================================

class Evaluator:
    """Walks one tag tree. Owns the frame stack and the global store."""

    def __init__(self, observer: Optional[Observer] = None):
        self.frames: List[Frame] = [Frame()]
        self.store: Dict[str, Value] = {}
        self.eval_counter = 0
        self.observer = observer or NULL_OBSERVER
        self.tracing = self.observer is not NULL_OBSERVER
        self.current_node: Optional[TagNode] = None
        self._plan: Dict[int, Operation] = {}

    # --- Frames and names ---

    @property
    def current_frame(self) -> Frame:
        return self.frames[-1]

    def declare_variable(self, name: str, value: Value) -> None:
        """Binds a variable in the innermost frame (used by hosts to seed a run)."""
        self.current_frame.variables[name] = value

    def attribute_visible(self, name: str) -> bool:
        return any(name in frame.attributes for frame in self.frames)

    def frame_index(self, name: str) -> Optional[int]:
        """Index of the innermost frame holding `name` (0 is the root frame)."""
        for i in range(len(self.frames) - 1, -1, -1):
            if name in self.frames[i]:
                return i
        return None

    def lookup(self, name: str) -> Value:
        idx = self.frame_index(name)
        if idx is None:
            raise UndefinedTargetError(name, action="look up")
        return self.frames[idx].get(name)

    def assign(self, name: str, value: Value) -> Value:
        idx = self.frame_index(name)
        if idx is None:
            pos = getattr(self.current_node, 'pos', None)
            raise UndefinedTargetError(name, pos)
        self.frames[idx].overwrite(name, value)
        if self.tracing:
            self.observer.record("assign", {
                "id": self.eval_counter, "name": name, "value": pformat(value), "frame": idx,
            })
        return value

    # --- Validation ---

    def validate(self, root: TagNode) -> Dict[int, Operation]:
        """Resolves every composite's operation before anything executes."""
        plan: Dict[int, Operation] = {}
        stack = [root]
        while stack:
            node = stack.pop()
            if not isinstance(node, Composite):
                continue
            name, prim = operation_name(node)
            pos = prim.pos or node.pos
            if name is None:
                raise ValidationError(
                    f"Operation name must be text, got {pformat(prim)}", pos, name=pformat(prim))
            op = _OPERATIONS_BY_NAME.get(name)
            if op is None:
                raise ValidationError(f"Unknown operation '{name}'", pos, name=name)
            plan[id(node)] = op
            stack.append(node.right)
            stack.append(node.left)
        self.observer.record("validate", {"composites": len(plan)})
        return plan

    # --- Execution ---

    def execute_root(self, root: TagNode) -> Value:
        """Validates then evaluates `root`; the store is left on `self.store`."""
        self._plan = self.validate(root)
        result = self._eval(root)
        if self.tracing:
            self.observer.record("eval-end", {"value": pformat(result)})
        return result

    def _eval(self, node: TagNode) -> Value:
        self.eval_counter += 1
        eval_id = self.eval_counter
        self.current_node = node

        if isinstance(node, Primitive):
            value = evaluate_primitive(node)
            if self.tracing:
                self.observer.record("eval-primitive", {
                    "id": eval_id, "node": pformat(node), "value": pformat(value),
                })
            return value

        op = self._plan[id(node)]
        self.observer.record("eval-composite", {"id": eval_id, "operation": op.value})

        if isinstance(node.left, Composite):
            if _is_set_head(node.left):
                return self._eval_set(node)
            return self._eval_compound(node)

        match op:
            case Operation.DEFINE:
                return self._eval_define(node, eval_id)
            case Operation.SET:
                raise MalformedSetError(
                    "set needs a value: write [[set: target]: value]", node.pos)

        argument = self._eval(node.right)
        self.current_node = node
        result = HANDLERS[op](self, argument)
        if self.tracing:
            self.observer.record("handler", {
                "id": eval_id, "operation": op.value,
                "argument": pformat(argument), "result": pformat(result),
            })
        return result

    def _eval_define(self, node: Composite, eval_id: int) -> Value:
        self.frames.append(Frame())
        self.observer.record("frame-push", {"id": eval_id, "depth": len(self.frames) - 1})
        try:
            return self._eval(node.right)
        finally:
            frame = self.frames.pop()
            if self.tracing:
                self.observer.record("frame-pop", {
                    "id": eval_id,
                    "depth": len(self.frames),
                    "attributes": {k: pformat(v) for k, v in frame.attributes.items()},
                    "variables": {k: pformat(v) for k, v in frame.variables.items()},
                })

    def _eval_set(self, node: Composite) -> Value:
        target_node = node.left.right
        target = self._eval(target_node)
        if not isinstance(target, Reference):
            raise MalformedSetError(
                f"set target must be a reference, got {pformat(target)}",
                target_node.pos or node.pos)
        value = self._eval(node.right)
        self.current_node = node
        return self.assign(target.name, value)

    def _eval_compound(self, node: Composite) -> Value:
        # Left is a whole tag: a declaration with initializer when it yields a
        # reference, otherwise the previous element of a sequence.
        head = self._eval(node.left)
        value = self._eval(node.right)
        if isinstance(head, Reference):
            self.current_node = node
            return self.assign(head.name, value)
        return value


def evaluate(root: TagNode, observer: Optional[Observer] = None) -> Tuple[Value, Dict[str, Value]]:
    """Runs a tree with a fresh evaluator; returns the final value and the store."""
    ev = Evaluator(observer)
    value = ev.execute_root(root)
    return value, ev.store
