"""
Formula evaluator for derived metrics.

Formulas are tiny arithmetic expressions over metric ids, e.g.

    price / ttmEps
    (price * commonSharesOutstanding) / annualRevenue
    operatingCashflow - capitalExpenditures

Grammar (recursive descent, usual precedence, left associative):

    expr    := term (("+" | "-") term)*
    term    := unary (("*" | "/") unary)*
    unary   := ("+" | "-") unary | primary
    primary := NUMBER | IDENT | "(" expr ")"

Formulas are parsed into an AST once and evaluated per date against plain
floats. Identifiers are whole tokens, so an id that is a prefix of another id
("fcf" vs "fcfPerShare") can never collide.

Evaluation never raises: a missing operand, a zero / non-finite divisor or a
non-finite result yields None for that date.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Union

from chartlens.models import Series

logger = logging.getLogger(__name__)


class FormulaSyntaxError(ValueError):
    """Raised by parse_formula for text that is not a valid formula."""


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class Name:
    id: str


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: "Node"


@dataclass(frozen=True)
class BinOp:
    op: str
    left: "Node"
    right: "Node"


Node = Union[Number, Name, UnaryOp, BinOp]


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"\s*(?:"
    r"(?P<number>\d+(?:\.\d*)?(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?)"
    r"|(?P<ident>[A-Za-z_][A-Za-z0-9_]*)"
    r"|(?P<op>[-+*/()])"
    r")"
)

# Bounds keep parsing and evaluation well inside the interpreter recursion limit
MAX_TOKENS = 200
MAX_DEPTH = 32


def tokenize(formula: str) -> list[tuple[str, str]]:
    """Split a formula into (kind, text) tokens; kind is number/ident/op."""
    tokens: list[tuple[str, str]] = []
    pos = 0
    text = formula.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if m is None or m.end() == pos:
            raise FormulaSyntaxError(f"Unexpected character {text[pos]!r} at {pos} in {formula!r}")
        kind = m.lastgroup
        if kind is None:
            raise FormulaSyntaxError(f"Unexpected character at {pos} in {formula!r}")
        tokens.append((kind, m.group(kind)))
        if len(tokens) > MAX_TOKENS:
            raise FormulaSyntaxError(f"Formula longer than {MAX_TOKENS} tokens")
        pos = m.end()
    return tokens


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class _Parser:
    def __init__(self, formula: str):
        self.formula = formula
        self.tokens = tokenize(formula)
        self.pos = 0
        self.depth = 0

    def _peek(self) -> tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> tuple[str, str]:
        tok = self._peek()
        if tok is None:
            raise FormulaSyntaxError(f"Unexpected end of formula {self.formula!r}")
        self.pos += 1
        return tok

    def _at_op(self, *ops: str) -> bool:
        tok = self._peek()
        return tok is not None and tok[0] == "op" and tok[1] in ops

    def parse(self) -> Node:
        if not self.tokens:
            raise FormulaSyntaxError("Empty formula")
        node = self._expr()
        if self._peek() is not None:
            raise FormulaSyntaxError(f"Unexpected token {self._peek()[1]!r} in {self.formula!r}")
        return node

    def _expr(self) -> Node:
        node = self._term()
        while self._at_op("+", "-"):
            op = self._next()[1]
            node = BinOp(op, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._unary()
        while self._at_op("*", "/"):
            op = self._next()[1]
            node = BinOp(op, node, self._unary())
        return node

    def _descend(self) -> None:
        self.depth += 1
        if self.depth > MAX_DEPTH:
            raise FormulaSyntaxError(f"Formula nested deeper than {MAX_DEPTH} levels")

    def _unary(self) -> Node:
        if self._at_op("+", "-"):
            op = self._next()[1]
            self._descend()
            operand = self._unary()
            self.depth -= 1
            return UnaryOp(op, operand)
        return self._primary()

    def _primary(self) -> Node:
        kind, text = self._next()
        if kind == "number":
            return Number(float(text))
        if kind == "ident":
            return Name(text)
        if text == "(":
            self._descend()
            node = self._expr()
            self.depth -= 1
            if not self._at_op(")"):
                raise FormulaSyntaxError(f"Missing ')' in {self.formula!r}")
            self._next()
            return node
        raise FormulaSyntaxError(f"Unexpected token {text!r} in {self.formula!r}")


def parse_formula(formula: str) -> Node:
    """Parse `formula` into an AST. Raises FormulaSyntaxError."""
    if not isinstance(formula, str):
        raise FormulaSyntaxError(f"Formula must be a string, got {type(formula).__name__}")
    return _Parser(formula).parse()


def formula_variables(node: Node) -> list[str]:
    """Metric ids referenced by the AST, in first-appearance order."""
    found: list[str] = []

    def walk(n: Node) -> None:
        if isinstance(n, Name):
            if n.id not in found:
                found.append(n.id)
        elif isinstance(n, UnaryOp):
            walk(n.operand)
        elif isinstance(n, BinOp):
            walk(n.left)
            walk(n.right)

    walk(node)
    return found


def binary_operands(formula: str) -> tuple[str, str, str] | None:
    """
    Return (op, left_id, right_id) when the formula is exactly `A op B`
    over two metric ids, else None.
    """
    try:
        node = parse_formula(formula)
    except FormulaSyntaxError:
        return None
    if isinstance(node, BinOp) and isinstance(node.left, Name) and isinstance(node.right, Name):
        return node.op, node.left.id, node.right.id
    return None


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def _finite(v: float | None) -> float | None:
    return v if v is not None and math.isfinite(v) else None


def evaluate_node(node: Node, values: dict[str, float]) -> float | None:
    """Evaluate the AST with `values` bound to names. None when undefined."""
    if isinstance(node, Number):
        return _finite(node.value)
    if isinstance(node, Name):
        v = values.get(node.id)
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return None
        return _finite(float(v))
    if isinstance(node, UnaryOp):
        operand = evaluate_node(node.operand, values)
        if operand is None:
            return None
        return -operand if node.op == "-" else operand

    left = evaluate_node(node.left, values)
    if left is None:
        return None
    right = evaluate_node(node.right, values)
    if right is None:
        return None
    if node.op == "+":
        result = left + right
    elif node.op == "-":
        result = left - right
    elif node.op == "*":
        result = left * right
    else:
        if right == 0:
            return None
        result = left / right
    return _finite(result)


def _lookup(series: Any) -> dict[str, Any]:
    if isinstance(series, dict):
        return series
    return {p["date"]: p["value"] for p in series or []}


def evaluate_formula(
    formula: str,
    series_by_id: dict[str, Series],
    dates: list[str],
) -> Series:
    """
    Evaluate `formula` for each date in `dates`.

    series_by_id maps metric id -> Series (a date->value mapping is accepted
    too). A date whose referenced values are not all present and numeric gets
    value None, as does any date where a divisor is zero or the result is not
    finite. An unparsable formula gives None everywhere.
    """
    try:
        node = parse_formula(formula)
    except FormulaSyntaxError as exc:
        logger.warning("[FORMULA] cannot parse %r: %s", formula, exc)
        return [{"date": d, "value": None} for d in dates]

    variables = formula_variables(node)
    missing = [v for v in variables if v not in series_by_id]
    if missing:
        logger.debug("[FORMULA] %r references unavailable metrics %s", formula, missing)

    lookups = {v: _lookup(series_by_id.get(v)) for v in variables}

    out: Series = []
    for d in dates:
        values = {v: lookups[v].get(d) for v in variables}
        out.append({"date": d, "value": evaluate_node(node, values)})
    return out
