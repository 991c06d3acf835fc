"""
ExpressionEvaluator — formula evaluation for rate breakdown line items.

A price expression is either a plain number ("2,500") or a formula that starts
with "=" ("=NetCost*0.01", "=Cement Blocks*5%"). Formulas are evaluated in
four stages:

  1. percent literals      "5%"          -> "(5/100)"
  2. name substitution     "NetCost"     -> "26250.0"   (longest name first)
  3. allowlist gate        only digits, + - * / ( ) . and whitespace survive
  4. arithmetic parser     recursive descent, no names, calls or assignment

Failures never raise to the caller; they come back as an ErrorKind on the
result with a value of 0.
"""

import logging
import math
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Tuple

from rategen import config
from rategen.errors import ErrorKind, ExpressionSyntaxError

logger = logging.getLogger("rategen.evaluator")


_PERCENT_LITERAL = re.compile(r"(\d+(?:\.\d+)?)%")
_PREFIXED_INTEGER = re.compile(r"^0(?:[xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)$")
_ALLOWED = re.compile(r"^[0-9+\-*/().\s]*$")
_OPERATORS = "+-*/()"


@dataclass(frozen=True)
class EvaluationResult:
    value: float
    error: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Literal parsing
# ---------------------------------------------------------------------------

def to_number(raw) -> float:
    """
    Best-effort numeric parse used for quantities and literal prices.

    Thousands separators are stripped and unsigned 0x / 0o / 0b integers are
    accepted. Digit-group underscores and anything else unparsable or
    non-finite give 0.
    """
    if raw is None or isinstance(raw, bool):
        return 0.0
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = str(raw).replace(",", "").strip()
        if not text or "_" in text:
            return 0.0
        if _PREFIXED_INTEGER.match(text):
            return float(int(text, 0))
        try:
            value = float(text)
        except ValueError:
            return 0.0
    return value if math.isfinite(value) else 0.0


def is_formula(expression) -> bool:
    return isinstance(expression, str) and expression.strip().startswith("=")


def literal_price(expression) -> float:
    """Price of an expression when no context exists yet; formulas count as 0."""
    if is_formula(expression):
        return 0.0
    return to_number(expression)


def format_number(value: float) -> str:
    """Positional decimal text for a float (never exponent notation)."""
    if not math.isfinite(value):
        # Leaves letters behind so the allowlist rejects the formula.
        return repr(value)
    text = format(Decimal(repr(value)), "f")
    return f"({text})" if value < 0 else text


# ---------------------------------------------------------------------------
# Arithmetic parser
# ---------------------------------------------------------------------------

def _tokenize(text: str) -> List[str]:
    tokens: List[str] = []
    i, n = 0, len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if ch in _OPERATORS:
            tokens.append(ch)
            i += 1
            continue
        if ch.isdigit() or ch == ".":
            j = i
            dots = 0
            while j < n and (text[j].isdigit() or text[j] == "."):
                if text[j] == ".":
                    dots += 1
                    if dots > 1:
                        raise ExpressionSyntaxError(f"Malformed number near position {i}")
                j += 1
            number = text[i:j]
            if number == ".":
                raise ExpressionSyntaxError(f"Malformed number near position {i}")
            tokens.append(number)
            i = j
            continue
        raise ExpressionSyntaxError(f"Unexpected character {ch!r}")
    if not tokens:
        raise ExpressionSyntaxError("Empty expression")
    return tokens


class _Parser:
    """
    expr   := term (('+' | '-') term)*
    term   := factor (('*' | '/') factor)*
    factor := ('+' | '-')* ( '(' expr ')' | number )

    Unary signs are folded in a loop. Parentheses nested deeper than
    max_depth raise ExpressionSyntaxError.
    """

    def __init__(self, tokens: List[str], max_depth: int = config.MAX_FORMULA_NESTING) -> None:
        self.tokens = tokens
        self.pos = 0
        self.depth = 0
        self.max_depth = max_depth

    def _peek(self) -> Optional[str]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _advance(self) -> str:
        tok = self.tokens[self.pos]
        self.pos += 1
        return tok

    def parse(self) -> float:
        value = self._expr()
        if self._peek() is not None:
            raise ExpressionSyntaxError(f"Unexpected token {self._peek()!r}")
        return value

    def _expr(self) -> float:
        left = self._term()
        while self._peek() in ("+", "-"):
            op = self._advance()
            right = self._term()
            left = left + right if op == "+" else left - right
        return left

    def _term(self) -> float:
        left = self._factor()
        while self._peek() in ("*", "/"):
            op = self._advance()
            right = self._factor()
            if op == "*":
                left = left * right
            elif right == 0:
                # x/0 and 0/0 are reported as non-finite results, not syntax errors
                left = math.nan if left == 0 else math.copysign(math.inf, left)
            else:
                left = left / right
        return left

    def _factor(self) -> float:
        tok = self._peek()
        negative = False
        while tok in ("+", "-"):
            self._advance()
            if tok == "-":
                negative = not negative
            tok = self._peek()
        if tok is None:
            raise ExpressionSyntaxError("Unexpected end of expression")
        if tok == "(":
            self._advance()
            self.depth += 1
            if self.depth > self.max_depth:
                raise ExpressionSyntaxError(f"Parentheses nested deeper than {self.max_depth}")
            value = self._expr()
            if self._peek() != ")":
                raise ExpressionSyntaxError("Unbalanced parentheses")
            self._advance()
            self.depth -= 1
        elif tok in _OPERATORS:
            raise ExpressionSyntaxError(f"Unexpected token {tok!r}")
        else:
            self._advance()
            value = float(tok)
        return -value if negative else value


def evaluate_arithmetic(text: str) -> float:
    """Evaluate an allowlisted arithmetic string. Raises ExpressionSyntaxError."""
    return _Parser(_tokenize(text)).parse()


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------

class ExpressionEvaluator:
    """Stateless evaluator; the context is passed explicitly on every call."""

    def evaluate(self, expression, context: Mapping[str, float]) -> EvaluationResult:
        if not is_formula(expression):
            return EvaluationResult(to_number(expression))

        body = expression.strip()[1:]
        body = self.rewrite_percents(body)
        body = self.substitute_names(body, context)

        if not _ALLOWED.match(body):
            logger.debug("Formula rejected by allowlist: %r -> %r", expression, body)
            return EvaluationResult(0.0, ErrorKind.INVALID_CHARACTERS)

        try:
            value = evaluate_arithmetic(body)
        except (ExpressionSyntaxError, ValueError, OverflowError) as e:
            logger.debug("Formula evaluation failed: %r (%s)", expression, e)
            return EvaluationResult(0.0, ErrorKind.EVAL_FAILED)

        if not math.isfinite(value):
            logger.debug("Formula produced a non-finite value: %r", expression)
            return EvaluationResult(0.0, ErrorKind.NAN_RESULT)

        return EvaluationResult(value)

    @staticmethod
    def rewrite_percents(body: str) -> str:
        return _PERCENT_LITERAL.sub(r"(\1/100)", body)

    @staticmethod
    def substitution_order(context: Mapping[str, float]) -> List[Tuple[str, float]]:
        """
        Names to substitute, longest first.

        Matching is case-insensitive, so names differing only in case collapse
        into one entry; the one inserted last into the context wins.
        """
        collapsed: Dict[str, float] = {}
        for name, value in context.items():
            key = str(name).lower()
            if not key.strip():
                continue
            collapsed.pop(key, None)
            collapsed[key] = value
        # sorted() is stable: equal lengths keep insertion order
        return sorted(collapsed.items(), key=lambda kv: len(kv[0]), reverse=True)

    def substitute_names(self, body: str, context: Mapping[str, float]) -> str:
        for name, value in self.substitution_order(context):
            pattern = re.compile(re.escape(name), re.IGNORECASE)
            replacement = format_number(float(value))
            body = pattern.sub(lambda _m: replacement, body)
        return body


_default_evaluator = ExpressionEvaluator()


def evaluate(expression, context: Optional[Mapping[str, float]] = None) -> EvaluationResult:
    """Module-level shortcut around a shared ExpressionEvaluator."""
    return _default_evaluator.evaluate(expression, context or {})
