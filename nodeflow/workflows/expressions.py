"""
Restricted arithmetic for operand values such as "entry * 0.95" or "close + 2".

Grammar:
    expr   := term (('+' | '-') term)*
    term   := factor (('*' | '/') factor)*
    factor := ('+' | '-') factor | NUMBER | NAME | '(' expr ')'

NAME must be one of the variables handed to evaluate(); nothing else is looked up.
"""

import math
import re
from typing import Dict, List, Optional, Tuple

_TOKEN_RE = re.compile(r'\s*(?:(\d+\.?\d*|\.\d+)|([A-Za-z_][A-Za-z_0-9]*)|(.))')

# Parentheses and unary signs nest at most this deep
MAX_DEPTH = 64


class ExpressionError(ValueError):
    pass


def tokenize(text: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    text = text.strip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            break
        number, name, op = m.groups()
        pos = m.end()
        if number is not None:
            tokens.append(('num', number))
        elif name is not None:
            tokens.append(('name', name))
        elif op is not None:
            if op.isspace():
                continue
            if op not in '+-*/()':
                raise ExpressionError(f"Unexpected character {op!r}")
            tokens.append(('op', op))
    return tokens


def references(text: str, name: str) -> bool:
    """True when `name` appears as an identifier token in text"""
    try:
        return any(kind == 'name' and tok == name for kind, tok in tokenize(text))
    except ExpressionError:
        return False


class _Parser:
    def __init__(self, tokens: List[Tuple[str, str]], variables: Dict[str, float]):
        self.tokens = tokens
        self.variables = variables
        self.pos = 0
        self.depth = 0

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _take(self) -> Tuple[str, str]:
        tok = self._peek()
        if tok is None:
            raise ExpressionError("Unexpected end of expression")
        self.pos += 1
        return tok

    def parse(self) -> float:
        value = self._expr()
        if self._peek() is not None:
            raise ExpressionError(f"Unexpected token {self._peek()[1]!r}")
        return value

    def _expr(self) -> float:
        value = self._term()
        while self._peek() in (('op', '+'), ('op', '-')):
            _, op = self._take()
            rhs = self._term()
            value = value + rhs if op == '+' else value - rhs
        return value

    def _term(self) -> float:
        value = self._factor()
        while self._peek() in (('op', '*'), ('op', '/')):
            _, op = self._take()
            rhs = self._factor()
            if op == '*':
                value = value * rhs
            else:
                if rhs == 0:
                    raise ExpressionError("Division by zero")
                value = value / rhs
        return value

    def _nest(self):
        self.depth += 1
        if self.depth > MAX_DEPTH:
            raise ExpressionError(f"Expression nested deeper than {MAX_DEPTH} levels")

    def _factor(self) -> float:
        kind, tok = self._take()
        if kind == 'op' and tok in '+-':
            self._nest()
            inner = self._factor()
            self.depth -= 1
            return inner if tok == '+' else -inner
        if kind == 'num':
            return float(tok)
        if kind == 'name':
            if tok not in self.variables:
                raise ExpressionError(f"Unknown name {tok!r}")
            return float(self.variables[tok])
        if kind == 'op' and tok == '(':
            self._nest()
            value = self._expr()
            if self._take() != ('op', ')'):
                raise ExpressionError("Missing closing parenthesis")
            self.depth -= 1
            return value
        raise ExpressionError(f"Unexpected token {tok!r}")


def evaluate(text: str, variables: Optional[Dict[str, float]] = None) -> float:
    """Evaluate a restricted arithmetic expression. Raises ExpressionError."""
    if not isinstance(text, str) or not text.strip():
        raise ExpressionError("Empty expression")
    result = _Parser(tokenize(text), variables or {}).parse()
    if not math.isfinite(result):
        raise ExpressionError("Expression is not finite")
    return result
