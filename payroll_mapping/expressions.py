"""
Restricted expressions for conditional mappings and calculated fields.

Conditions and formulas in rule sets must use a fixed operator set.  This
module tokenizes and parses them with a small recursive-descent parser into a
closed set of frozen AST nodes, then evaluates those nodes against a record.
Nothing is ever handed to ``eval``/``exec`` or the Python ``ast`` module.

Conditions allow:
  - Logical: and / &&, or / ||, not / !
  - Comparisons: ==, !=, === (strict), !== (strict), <, <=, >, >=
  - Predicates: equals, not_equals, greater_than, greater_than_or_equal,
    less_than, less_than_or_equal, contains, starts_with, ends_with,
    is_null, is_not_null, is_empty, is_not_empty
  - Literals: numbers, 'quoted' or "quoted" strings, true, false, null
  - Field access: source.field, dest.field / destination.field, or a bare
    field name (source first, then destination)
  - Arithmetic operands as in formulas

Formulas allow numbers, field references, + - * /, unary minus and
parentheses.  Field values are read as Decimal; a missing or null field
counts as 0.

Rejected: anything else -- attribute chains on unknown roots, function
calls other than the predicates, chained comparisons, assignment.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from payroll_kernel.exceptions import ExpressionEvaluationError, InvalidExpressionError

SOURCE_ROOT = "source"
DESTINATION_ROOT = "destination"

# Context roots allowed for field access (root.field_name)
FIELD_ROOTS: dict[str, str] = {
    "source": SOURCE_ROOT,
    "src": SOURCE_ROOT,
    "dest": DESTINATION_ROOT,
    "destination": DESTINATION_ROOT,
}

# Predicate name -> number of arguments
PREDICATES: dict[str, int] = {
    "equals": 2,
    "not_equals": 2,
    "greater_than": 2,
    "greater_than_or_equal": 2,
    "less_than": 2,
    "less_than_or_equal": 2,
    "contains": 2,
    "starts_with": 2,
    "ends_with": 2,
    "is_null": 1,
    "is_not_null": 1,
    "is_empty": 1,
    "is_not_empty": 1,
}

COMPARISON_OPERATORS: frozenset[str] = frozenset({
    "==", "!=", "===", "!==", "<", "<=", ">", ">=",
})

# Parser recursion and operator chains both count toward this limit
MAX_NESTING_DEPTH = 50

_KEYWORD_LITERALS: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "none": None,
}

_TOKEN_PATTERN = re.compile(
    r"""
    (?P<NUMBER>\d+(?:\.\d+)?|\.\d+)
  | (?P<STRING>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
  | (?P<NAME>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)
  | (?P<OP>===|!==|==|!=|<=|>=|&&|\|\||[<>!()+\-*/,])
  | (?P<SKIP>\s+)
  | (?P<MISMATCH>.)
    """,
    re.VERBOSE,
)
_ESCAPE = re.compile(r"\\(.)")


# =============================================================================
# AST nodes
# =============================================================================


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class FieldRef:
    root: str | None  # SOURCE_ROOT, DESTINATION_ROOT, or None for a bare name
    name: str


@dataclass(frozen=True)
class Not:
    operand: Node


@dataclass(frozen=True)
class BoolOp:
    op: str  # "and" | "or"
    operands: tuple[Node, ...]


@dataclass(frozen=True)
class Compare:
    op: str
    left: Node
    right: Node


@dataclass(frozen=True)
class Arithmetic:
    op: str  # + - * /
    left: Node
    right: Node


@dataclass(frozen=True)
class Negate:
    operand: Node


@dataclass(frozen=True)
class Predicate:
    name: str
    args: tuple[Node, ...]


Node = Literal | FieldRef | Not | BoolOp | Compare | Arithmetic | Negate | Predicate


@dataclass(frozen=True)
class ParsedExpression:
    """A parsed condition or formula, retaining its source text."""

    text: str
    kind: str  # "condition" | "formula"
    root: Node

    def field_refs(self) -> tuple[FieldRef, ...]:
        refs: list[FieldRef] = []
        _collect_refs(self.root, refs)
        return tuple(refs)


@dataclass(frozen=True)
class ExpressionError:
    """A validation error found in a condition or formula."""

    expression: str
    message: str
    position: int = 0


# =============================================================================
# Tokenizer and parser
# =============================================================================


@dataclass(frozen=True)
class _Token:
    kind: str  # NUMBER, STRING, NAME, OP, END
    value: str
    position: int


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    for match in _TOKEN_PATTERN.finditer(text):
        kind = match.lastgroup
        value = match.group()
        if kind == "SKIP":
            continue
        if kind == "MISMATCH":
            raise InvalidExpressionError(text, f"Unexpected character {value!r}", match.start())
        tokens.append(_Token(kind, value, match.start()))
    tokens.append(_Token("END", "", len(text)))
    return tokens


class _Parser:
    """Recursive-descent parser over the restricted grammar.

    condition  := or_expr
    or_expr    := and_expr (("or" | "||") and_expr)*
    and_expr   := not_expr (("and" | "&&") not_expr)*
    not_expr   := ("not" | "!") not_expr | comparison
    comparison := additive (CMP additive)?
    additive   := term (("+" | "-") term)*
    term       := unary (("*" | "/") unary)*
    unary      := "-" unary | primary
    primary    := NUMBER | STRING | literal | predicate "(" args ")"
                | field | "(" expr ")"

    Formulas start at ``additive`` and reject strings, boolean/null literals
    and predicates.

    Parentheses, negations, predicate calls and each chained operator add a
    nesting level; past ``MAX_NESTING_DEPTH`` the text is rejected.
    """

    def __init__(self, text: str, kind: str):
        self._text = text
        self._kind = kind
        self._tokens = _tokenize(text)
        self._index = 0
        self._depth = 0

    # -- token helpers -------------------------------------------------------

    def _peek(self) -> _Token:
        return self._tokens[self._index]

    def _advance(self) -> _Token:
        token = self._tokens[self._index]
        self._index += 1
        return token

    def _error(self, message: str, token: _Token | None = None) -> InvalidExpressionError:
        position = (token or self._peek()).position
        return InvalidExpressionError(self._text, message, position)

    def _is_op(self, *values: str) -> bool:
        token = self._peek()
        return token.kind == "OP" and token.value in values

    def _is_keyword(self, *words: str) -> bool:
        token = self._peek()
        return token.kind == "NAME" and token.value.lower() in words

    def _nest(self, token: _Token) -> None:
        self._depth += 1
        if self._depth > MAX_NESTING_DEPTH:
            raise self._error(
                f"Expression nests too deeply (limit is {MAX_NESTING_DEPTH} levels)", token,
            )

    def _expect_op(self, value: str) -> _Token:
        if not self._is_op(value):
            token = self._peek()
            found = token.value or "end of expression"
            raise self._error(f"Expected {value!r}, found {found!r}")
        return self._advance()

    # -- grammar -------------------------------------------------------------

    def parse(self) -> Node:
        if self._peek().kind == "END":
            raise self._error("Expression is empty")
        node = self._or_expr() if self._kind == "condition" else self._additive()
        token = self._peek()
        if token.kind != "END":
            raise self._error(f"Unexpected token {token.value!r}", token)
        return node

    def _or_expr(self) -> Node:
        operands = [self._and_expr()]
        while self._is_op("||") or self._is_keyword("or"):
            self._advance()
            operands.append(self._and_expr())
        return operands[0] if len(operands) == 1 else BoolOp("or", tuple(operands))

    def _and_expr(self) -> Node:
        operands = [self._not_expr()]
        while self._is_op("&&") or self._is_keyword("and"):
            self._advance()
            operands.append(self._not_expr())
        return operands[0] if len(operands) == 1 else BoolOp("and", tuple(operands))

    def _not_expr(self) -> Node:
        if self._is_op("!") or self._is_keyword("not"):
            self._nest(self._advance())
            node = Not(self._not_expr())
            self._depth -= 1
            return node
        return self._comparison()

    def _comparison(self) -> Node:
        left = self._additive()
        token = self._peek()
        if token.kind == "OP" and token.value in COMPARISON_OPERATORS:
            self._advance()
            return Compare(token.value, left, self._additive())
        return left

    def _additive(self) -> Node:
        node = self._term()
        chained = 0
        while self._is_op("+", "-"):
            token = self._advance()
            self._nest(token)
            chained += 1
            node = Arithmetic(token.value, node, self._term())
        self._depth -= chained
        return node

    def _term(self) -> Node:
        node = self._unary()
        chained = 0
        while self._is_op("*", "/"):
            token = self._advance()
            self._nest(token)
            chained += 1
            node = Arithmetic(token.value, node, self._unary())
        self._depth -= chained
        return node

    def _unary(self) -> Node:
        if self._is_op("-", "+"):
            token = self._advance()
            self._nest(token)
            operand = self._unary()
            self._depth -= 1
            return Negate(operand) if token.value == "-" else operand
        return self._primary()

    def _primary(self) -> Node:
        token = self._peek()

        if token.kind == "NUMBER":
            self._advance()
            return Literal(Decimal(token.value))

        if token.kind == "STRING":
            if self._kind == "formula":
                raise self._error("String literals are not allowed in formulas", token)
            self._advance()
            return Literal(_ESCAPE.sub(r"\1", token.value[1:-1]))

        if self._is_op("("):
            self._nest(self._advance())
            inner = self._or_expr() if self._kind == "condition" else self._additive()
            self._expect_op(")")
            self._depth -= 1
            return inner

        if token.kind == "NAME":
            return self._name(token)

        found = token.value or "end of expression"
        raise self._error(f"Unexpected token {found!r}", token)

    def _name(self, token: _Token) -> Node:
        lowered = token.value.lower()
        if lowered in _KEYWORD_LITERALS:
            if self._kind == "formula":
                raise self._error(f"{token.value!r} is not allowed in formulas", token)
            self._advance()
            return Literal(_KEYWORD_LITERALS[lowered])
        if lowered in ("and", "or", "not"):
            raise self._error(f"Unexpected keyword {token.value!r}", token)

        self._advance()
        if self._is_op("("):
            return self._predicate(token)
        return self._field(token)

    def _predicate(self, token: _Token) -> Node:
        name = token.value
        if self._kind == "formula":
            raise self._error(f"Function calls are not allowed in formulas: {name}", token)
        arity = PREDICATES.get(name)
        if arity is None:
            raise self._error(f"Disallowed function call: {name}", token)
        self._nest(self._expect_op("("))
        args: list[Node] = []
        if not self._is_op(")"):
            args.append(self._additive())
            while self._is_op(","):
                self._advance()
                args.append(self._additive())
        self._expect_op(")")
        self._depth -= 1
        if len(args) != arity:
            raise self._error(
                f"{name}() takes {arity} argument{'s' if arity != 1 else ''}, got {len(args)}",
                token,
            )
        return Predicate(name, tuple(args))

    def _field(self, token: _Token) -> Node:
        head, _, rest = token.value.partition(".")
        if not rest:
            return FieldRef(None, head)
        root = FIELD_ROOTS.get(head)
        if root is None:
            raise self._error(
                f"Unknown field root {head!r}; use source.<field> or dest.<field>",
                token,
            )
        return FieldRef(root, rest)


def parse_condition(text: str) -> ParsedExpression:
    """Parse a boolean condition.

    Raises:
        InvalidExpressionError: if ``text`` is not in the restricted grammar.
    """
    return ParsedExpression(text, "condition", _Parser(text, "condition").parse())


def parse_formula(text: str) -> ParsedExpression:
    """Parse an arithmetic formula.

    Raises:
        InvalidExpressionError: if ``text`` is not in the restricted grammar.
    """
    return ParsedExpression(text, "formula", _Parser(text, "formula").parse())


def validate_condition(text: str) -> list[ExpressionError]:
    """Validate a condition. Empty list means the expression is valid."""
    return _validate(text, parse_condition)


def validate_formula(text: str) -> list[ExpressionError]:
    """Validate a formula. Empty list means the expression is valid."""
    return _validate(text, parse_formula)


def _validate(text: str, parser) -> list[ExpressionError]:
    if not isinstance(text, str):
        return [ExpressionError(expression=str(text), message="Expression must be a string")]
    try:
        parser(text)
    except InvalidExpressionError as exc:
        return [ExpressionError(expression=text, message=exc.message, position=exc.position)]
    return []


def _collect_refs(node: Node, refs: list[FieldRef]) -> None:
    if isinstance(node, FieldRef):
        refs.append(node)
    elif isinstance(node, (Not, Negate)):
        _collect_refs(node.operand, refs)
    elif isinstance(node, BoolOp):
        for operand in node.operands:
            _collect_refs(operand, refs)
    elif isinstance(node, (Compare, Arithmetic)):
        _collect_refs(node.left, refs)
        _collect_refs(node.right, refs)
    elif isinstance(node, Predicate):
        for arg in node.args:
            _collect_refs(arg, refs)


# =============================================================================
# Evaluation
# =============================================================================


def as_number(value: Any) -> Decimal | None:
    """Decimal for numeric values and numeric strings; None otherwise."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        number = Decimal(repr(value)) if isinstance(value, float) else Decimal(value)
        return number if number.is_finite() else None
    if isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
        return number if number.is_finite() else None
    return None


def loose_equals(left: Any, right: Any) -> bool:
    """Equality that treats 5, 5.0 and "5" as equal."""
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, bool) or isinstance(right, bool):
        return left is right
    left_num, right_num = as_number(left), as_number(right)
    if left_num is not None and right_num is not None:
        return left_num == right_num
    return str(left) == str(right)


def strict_equals(left: Any, right: Any) -> bool:
    """Equality without string/number coercion."""
    numeric = (int, float, Decimal)
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, numeric) and isinstance(right, numeric):
        return as_number(left) == as_number(right)
    return type(left) is type(right) and left == right


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) == 0
    return False


def _truthy(value: Any) -> bool:
    if isinstance(value, Decimal):
        return value != 0
    return bool(value) and not _is_empty(value)


class _Scope:
    def __init__(self, text: str, source: Mapping[str, Any], destination: Mapping[str, Any]):
        self.text = text
        self.source = source
        self.destination = destination

    def resolve(self, ref: FieldRef) -> Any:
        if ref.root == SOURCE_ROOT:
            return self.source.get(ref.name)
        if ref.root == DESTINATION_ROOT:
            return self.destination.get(ref.name)
        if ref.name in self.source:
            return self.source[ref.name]
        return self.destination.get(ref.name)

    def fail(self, reason: str) -> ExpressionEvaluationError:
        return ExpressionEvaluationError(self.text, reason)


def _order(op: str, left: Any, right: Any, scope: _Scope) -> bool:
    if left is None or right is None:
        return False
    left_num, right_num = as_number(left), as_number(right)
    if left_num is not None and right_num is not None:
        a, b = left_num, right_num
    elif isinstance(left, str) and isinstance(right, str):
        a, b = left, right
    else:
        raise scope.fail(f"cannot compare {left!r} and {right!r}")
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


def _compare(op: str, left: Any, right: Any, scope: _Scope) -> bool:
    if op == "==":
        return loose_equals(left, right)
    if op == "!=":
        return not loose_equals(left, right)
    if op == "===":
        return strict_equals(left, right)
    if op == "!==":
        return not strict_equals(left, right)
    return _order(op, left, right, scope)


_PREDICATE_ORDER = {
    "greater_than": ">",
    "greater_than_or_equal": ">=",
    "less_than": "<",
    "less_than_or_equal": "<=",
}


def _predicate(name: str, args: list[Any], scope: _Scope) -> bool:
    if name == "is_null":
        return args[0] is None
    if name == "is_not_null":
        return args[0] is not None
    if name == "is_empty":
        return _is_empty(args[0])
    if name == "is_not_empty":
        return not _is_empty(args[0])

    value, other = args
    if name == "equals":
        return loose_equals(value, other)
    if name == "not_equals":
        return not loose_equals(value, other)
    if name in _PREDICATE_ORDER:
        return _order(_PREDICATE_ORDER[name], value, other, scope)
    if value is None or other is None:
        return False
    if name == "contains":
        if isinstance(value, (list, tuple)):
            return any(loose_equals(item, other) for item in value)
        return str(other) in str(value)
    if name == "starts_with":
        return str(value).startswith(str(other))
    return str(value).endswith(str(other))


def _number(value: Any, scope: _Scope) -> Decimal:
    if value is None:
        return Decimal(0)
    number = as_number(value)
    if number is None:
        raise scope.fail(f"non-numeric value {value!r}")
    return number


def _arithmetic(node: Arithmetic, scope: _Scope) -> Decimal:
    left = _number(_evaluate(node.left, scope), scope)
    right = _number(_evaluate(node.right, scope), scope)
    if node.op == "/" and right == 0:
        raise scope.fail("division by zero")
    try:
        if node.op == "+":
            return left + right
        if node.op == "-":
            return left - right
        if node.op == "*":
            return left * right
        return left / right
    except ArithmeticError as exc:
        raise scope.fail(f"arithmetic error: {type(exc).__name__}") from exc


def _evaluate(node: Node, scope: _Scope) -> Any:
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, FieldRef):
        return scope.resolve(node)
    if isinstance(node, Not):
        return not _truthy(_evaluate(node.operand, scope))
    if isinstance(node, BoolOp):
        if node.op == "and":
            return all(_truthy(_evaluate(o, scope)) for o in node.operands)
        return any(_truthy(_evaluate(o, scope)) for o in node.operands)
    if isinstance(node, Compare):
        return _compare(node.op, _evaluate(node.left, scope), _evaluate(node.right, scope), scope)
    if isinstance(node, Arithmetic):
        return _arithmetic(node, scope)
    if isinstance(node, Negate):
        return -_number(_evaluate(node.operand, scope), scope)
    if isinstance(node, Predicate):
        return _predicate(node.name, [_evaluate(a, scope) for a in node.args], scope)
    raise scope.fail(f"unsupported node {type(node).__name__}")


def evaluate_condition(
    expression: ParsedExpression | str,
    source: Mapping[str, Any],
    destination: Mapping[str, Any] | None = None,
) -> bool:
    """Evaluate a condition against a source record and the mapped destination.

    Raises:
        InvalidExpressionError: if given text that does not parse.
        ExpressionEvaluationError: if operands cannot be compared or computed.
    """
    parsed = parse_condition(expression) if isinstance(expression, str) else expression
    scope = _Scope(parsed.text, source, destination or {})
    return _truthy(_evaluate(parsed.root, scope))


def evaluate_formula(
    expression: ParsedExpression | str,
    source: Mapping[str, Any],
    destination: Mapping[str, Any] | None = None,
) -> Decimal:
    """Evaluate an arithmetic formula; the result is an unrounded Decimal.

    Raises:
        InvalidExpressionError: if given text that does not parse.
        ExpressionEvaluationError: on non-numeric operands or division by zero.
    """
    parsed = parse_formula(expression) if isinstance(expression, str) else expression
    scope = _Scope(parsed.text, source, destination or {})
    return _number(_evaluate(parsed.root, scope), scope)
