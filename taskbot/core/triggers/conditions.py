"""Safe condition expressions for condition-triggered jobs.

Grammar::

    expr       := or_expr
    or_expr    := and_expr ('OR' and_expr)*
    and_expr   := not_expr ('AND' not_expr)*
    not_expr   := 'NOT' not_expr | comparison
    comparison := value (op value)?
    value      := '(' expr ')' | number | string | true | false | null | identifier
    op         := > | >= | < | <= | == | !=

Identifiers are looked up in a flat metric context (see
``taskbot.core.metrics``). Nothing is ever passed to ``eval``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

MAX_CONDITION_LENGTH = 500
MAX_DEPTH = 10

_IDENT_RE = re.compile(r"[a-z_][a-z0-9_]*")
_WORD_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_NUMBER_RE = re.compile(r"-?[0-9]+(?:\.[0-9]+)?")

_OPS = (">=", "<=", "==", "!=", ">", "<")


class ConditionError(ValueError):
    """Malformed condition expression."""


@dataclass
class _Token:
    kind: str  # number | string | bool | null | ident | op | keyword | paren
    value: Any = None


def tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if ch in "()":
            tokens.append(_Token("paren", ch))
            i += 1
            continue
        op = next((o for o in _OPS if text.startswith(o, i)), None)
        if op:
            tokens.append(_Token("op", op))
            i += len(op)
            continue
        m = _NUMBER_RE.match(text, i)
        if m:
            tokens.append(_Token("number", float(m.group())))
            i = m.end()
            continue
        if ch in "'\"":
            end = text.find(ch, i + 1)
            if end < 0:
                raise ConditionError("Unterminated string literal")
            tokens.append(_Token("string", text[i + 1:end]))
            i = end + 1
            continue
        m = _WORD_RE.match(text, i)
        if m:
            word = m.group()
            if word in ("AND", "OR", "NOT"):
                tokens.append(_Token("keyword", word))
            elif word == "true":
                tokens.append(_Token("bool", True))
            elif word == "false":
                tokens.append(_Token("bool", False))
            elif word == "null":
                tokens.append(_Token("null"))
            elif _IDENT_RE.fullmatch(word):
                tokens.append(_Token("ident", word))
            else:
                raise ConditionError(f"Invalid identifier: {word}")
            i = m.end()
            continue
        raise ConditionError(f"Unexpected character: {ch!r}")
    return tokens


class _Parser:
    def __init__(self, tokens: list[_Token], context: dict[str, Any]):
        self.tokens = tokens
        self.context = context
        self.pos = 0
        self.depth = 0

    def parse(self) -> Any:
        result = self._or()
        if self.pos < len(self.tokens):
            raise ConditionError("Unexpected tokens after expression")
        return result

    def _peek(self) -> _Token | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _is_keyword(self, word: str) -> bool:
        tok = self._peek()
        return tok is not None and tok.kind == "keyword" and tok.value == word

    def _or(self) -> Any:
        left = self._and()
        while self._is_keyword("OR"):
            self.pos += 1
            right = self._and()
            left = _truthy(left) or _truthy(right)
        return left

    def _and(self) -> Any:
        left = self._not()
        while self._is_keyword("AND"):
            self.pos += 1
            right = self._not()
            left = _truthy(left) and _truthy(right)
        return left

    def _not(self) -> Any:
        if self._is_keyword("NOT"):
            self.pos += 1
            return not _truthy(self._not())
        return self._comparison()

    def _comparison(self) -> Any:
        left = self._value()
        tok = self._peek()
        if tok is not None and tok.kind == "op":
            self.pos += 1
            right = self._value()
            return _compare(left, tok.value, right)
        return left

    def _value(self) -> Any:
        self.depth += 1
        if self.depth > MAX_DEPTH:
            raise ConditionError("Max expression depth exceeded")

        tok = self._peek()
        if tok is None:
            raise ConditionError("Unexpected end of expression")
        self.pos += 1

        if tok.kind == "paren" and tok.value == "(":
            result = self._or()
            closing = self._peek()
            if closing is None or closing.kind != "paren" or closing.value != ")":
                raise ConditionError("Expected closing parenthesis")
            self.pos += 1
        elif tok.kind in ("number", "string", "bool"):
            result = tok.value
        elif tok.kind == "null":
            result = None
        elif tok.kind == "ident":
            result = self.context.get(tok.value)
        else:
            raise ConditionError(f"Unexpected token: {tok.value!r}")

        self.depth -= 1
        return result


def _truthy(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return bool(value)


def _compare(left: Any, op: str, right: Any) -> bool:
    if left is None or right is None:
        return False
    if op == "==":
        return left == right
    if op == "!=":
        return left != right
    if isinstance(left, str) != isinstance(right, str):
        return False
    if op == ">":
        return left > right
    if op == ">=":
        return left >= right
    if op == "<":
        return left < right
    return left <= right


def check_condition(expression: str) -> None:
    """Raise ConditionError if ``expression`` is not a well-formed condition."""
    if not expression or not expression.strip():
        raise ConditionError("Empty condition")
    if len(expression) > MAX_CONDITION_LENGTH:
        raise ConditionError(f"Condition longer than {MAX_CONDITION_LENGTH} chars")
    _Parser(tokenize(expression), {}).parse()


def evaluate_condition(expression: str, context: dict[str, Any]) -> bool:
    """Evaluate ``expression`` against a flat metric context.

    Returns False on any parse error, unknown identifier or null comparison.
    """
    if not expression or len(expression) > MAX_CONDITION_LENGTH:
        return False
    try:
        return _truthy(_Parser(tokenize(expression), context).parse())
    except ConditionError:
        return False
