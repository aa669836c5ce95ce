"""Boolean gate expressions for batch commands.

A condition is a small expression over environment values::

    ${RUN_UI_TESTS} == "true" && !(CI == "false" || ${SKIP_UI})

Supported: ``${VAR}`` and bare identifiers (both read from the environment,
missing variables read as the empty string), quoted strings, numbers,
``true``/``false``, ``==``, ``!=``, ``&&``, ``||``, ``!`` and parentheses.
``${VAR}`` inside a quoted string is replaced with the variable's value;
the result stays a plain string and is never parsed again.
Nothing is ever executed; the text is tokenized, parsed into a tree and the
tree is walked.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Mapping, Union

from gocars_batch.models import ConditionEvaluationError

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<var>\$\{(?P<var_name>[^}]*)\})
  | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
  | (?P<number>-?\d+(?:\.\d+)?)
  | (?P<op>==|!=|&&|\|\||!|\(|\))
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    """,
    re.VERBOSE,
)
_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_PLACEHOLDER_RE = re.compile(r"\$\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}")
_FALSE_TEXT = {"", "false", "0"}


@dataclass(frozen=True)
class _Token:
    kind: str
    value: str
    pos: int


@dataclass(frozen=True)
class Literal:
    value: str | bool | int | float


@dataclass(frozen=True)
class EnvRef:
    name: str


@dataclass(frozen=True)
class Template:
    """A quoted string holding ${VAR} placeholders, filled in at evaluation."""

    text: str


@dataclass(frozen=True)
class Not:
    operand: "Node"


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Node"
    right: "Node"


Node = Union[Literal, EnvRef, Template, Not, BinaryOp]


def _unescape(raw: str) -> str:
    body = raw[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise ConditionEvaluationError(
                f"unexpected character {text[pos]!r} at position {pos} in {text!r}"
            )
        kind = match.lastgroup or ""
        if kind == "var":
            name = match.group("var_name").strip()
            if not _ENV_NAME_RE.match(name):
                raise ConditionEvaluationError(
                    f"invalid variable reference ${{{name}}} at position {pos}"
                )
            tokens.append(_Token("var", name, pos))
        elif kind != "ws":
            tokens.append(_Token(kind, match.group(kind), pos))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.index = 0

    def _peek(self) -> _Token | None:
        if self.index < len(self.tokens):
            return self.tokens[self.index]
        return None

    def _accept_op(self, *ops: str) -> str | None:
        token = self._peek()
        if token is not None and token.kind == "op" and token.value in ops:
            self.index += 1
            return token.value
        return None

    def _fail(self, message: str) -> ConditionEvaluationError:
        token = self._peek()
        where = "end of input" if token is None else f"position {token.pos}"
        return ConditionEvaluationError(f"{message} at {where} in {self.text!r}")

    def parse(self) -> Node:
        if not self.tokens:
            raise ConditionEvaluationError("condition is empty")
        node = self._parse_or()
        if self._peek() is not None:
            raise self._fail("unexpected token")
        return node

    def _parse_or(self) -> Node:
        node = self._parse_and()
        while self._accept_op("||"):
            node = BinaryOp("||", node, self._parse_and())
        return node

    def _parse_and(self) -> Node:
        node = self._parse_unary()
        while self._accept_op("&&"):
            node = BinaryOp("&&", node, self._parse_unary())
        return node

    def _parse_unary(self) -> Node:
        if self._accept_op("!"):
            return Not(self._parse_unary())
        return self._parse_comparison()

    def _parse_comparison(self) -> Node:
        node = self._parse_primary()
        op = self._accept_op("==", "!=")
        if op is not None:
            node = BinaryOp(op, node, self._parse_primary())
        return node

    def _parse_primary(self) -> Node:
        token = self._peek()
        if token is None:
            raise self._fail("expected a value")
        if token.kind == "op" and token.value == "(":
            self.index += 1
            node = self._parse_or()
            if not self._accept_op(")"):
                raise self._fail("expected ')'")
            return node
        self.index += 1
        if token.kind == "var":
            return EnvRef(token.value)
        if token.kind == "string":
            text = _unescape(token.value)
            if _PLACEHOLDER_RE.search(text):
                return Template(text)
            return Literal(text)
        if token.kind == "number":
            number = token.value
            return Literal(float(number) if "." in number else int(number))
        if token.kind == "ident":
            if token.value == "true":
                return Literal(True)
            if token.value == "false":
                return Literal(False)
            return EnvRef(token.value)
        self.index -= 1
        raise self._fail(f"unexpected {token.value!r}")


@lru_cache(maxsize=256)
def parse_condition(text: str) -> Node:
    """Parse *text* into an expression tree, raising on syntax errors."""
    return _Parser(text).parse()


def _as_text(value: str | bool | int | float) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _truthy(value: str | bool | int | float) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return value.strip().lower() not in _FALSE_TEXT


def _evaluate_node(node: Node, env: Mapping[str, str]) -> str | bool | int | float:
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, EnvRef):
        return env.get(node.name, "")
    if isinstance(node, Template):
        return _PLACEHOLDER_RE.sub(lambda match: env.get(match.group(1), ""), node.text)
    if isinstance(node, Not):
        return not _truthy(_evaluate_node(node.operand, env))
    if node.op == "&&":
        return _truthy(_evaluate_node(node.left, env)) and _truthy(
            _evaluate_node(node.right, env)
        )
    if node.op == "||":
        return _truthy(_evaluate_node(node.left, env)) or _truthy(
            _evaluate_node(node.right, env)
        )
    left = _as_text(_evaluate_node(node.left, env))
    right = _as_text(_evaluate_node(node.right, env))
    if node.op == "==":
        return left == right
    if node.op == "!=":
        return left != right
    raise ConditionEvaluationError(f"unsupported operator '{node.op}'")


def evaluate_condition(text: str, env: Mapping[str, str]) -> bool:
    """Evaluate a condition string against *env*.

    Comparisons compare the text form of both sides, so ``${N} == 1`` and
    ``${FLAG} == true`` behave as they read.
    """
    return _truthy(_evaluate_node(parse_condition(text), env))
