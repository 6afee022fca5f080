"""
formula_engine.py — Node formula evaluation and quantity rounding.

Formula language:
    numbers          12, 0.5, 1e3
    symbols          Area, Length, Studs, any earlier node's name/SKU/alias;
                     scope keys such as "SID-01" or "Siding Panel" are read whole
    operators        + - * / %   ^ or ** (power)   unary + - not !
    comparisons      < <= > >= == !=          (yield 1 or 0)
    logic            and && or ||
    constants        pi e true false
    functions        abs ceil floor round sqrt min max pow log exp sin cos tan
    conditional      if <condition> (<expression>)

Rules:
    - A symbol that is not in scope (and is not a constant) evaluates to 0.
    - A conditional returns its expression when the condition is non-zero,
      otherwise 0.
    - Any tokenizer / parser / arithmetic failure makes the whole formula 0.
    - Non-finite results are 0, and a non-finite condition is false.

No eval() — recursive descent over a token list.
"""

import logging
import math
import re
from typing import Callable, Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger("takeoff-formula")


# ---------------------------------------------------------------------------
# Builtins
# ---------------------------------------------------------------------------

def _js_round(value: float) -> float:
    return float(math.floor(value + 0.5))


FUNCTIONS: Dict[str, Callable[..., float]] = {
    "abs": abs,
    "ceil": math.ceil,
    "floor": math.floor,
    "round": _js_round,
    "sqrt": math.sqrt,
    "min": min,
    "max": max,
    "pow": math.pow,
    "log": math.log,
    "exp": math.exp,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
}

CONSTANTS: Dict[str, float] = {
    "pi": math.pi,
    "e": math.e,
    "true": 1.0,
    "false": 0.0,
}

_KEYWORDS = {"and": "&&", "or": "||", "not": "!"}


class FormulaError(ValueError):
    """Raised internally for malformed formulas; never escapes evaluate()."""


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<num>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
  | (?P<name>[A-Za-z_][A-Za-z0-9_.]*)
  | (?P<op>\*\*|<=|>=|==|!=|&&|\|\||[-+*/%^()<>!,])
    """,
    re.VERBOSE,
)

_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_.]*\Z")
_WORD_CHARS = r"A-Za-z0-9_."


def _key_pattern(key: str) -> str:
    """Escaped scope key, guarded so it never matches inside a longer word."""
    pattern = re.escape(key)
    if re.match(f"[{_WORD_CHARS}]", key[0]):
        pattern = f"(?<![{_WORD_CHARS}])" + pattern
    if re.match(f"[{_WORD_CHARS}]", key[-1]):
        pattern += f"(?![{_WORD_CHARS}])"
    return pattern


def _scope_key_re(scope: Mapping[str, float]) -> Optional[re.Pattern]:
    """
    Matcher for scope keys the name rule cannot read ("SID-01", "Siding Panel").

    Longest key first, so "Wall Stud" wins over "Wall" when both exist.
    """
    keys = sorted(
        (k for k in scope if k and k.strip() == k and not _IDENTIFIER_RE.match(k)),
        key=len,
        reverse=True,
    )
    if not keys:
        return None
    return re.compile("|".join(_key_pattern(k) for k in keys))


def _tokenize(formula: str, scope: Mapping[str, float]) -> List[Tuple[str, str]]:
    key_re = _scope_key_re(scope)
    tokens = []
    pos = 0
    while pos < len(formula):
        if key_re is not None:
            m = key_re.match(formula, pos)
            if m is not None:
                tokens.append(("key", m.group()))
                pos = m.end()
                continue
        m = _TOKEN_RE.match(formula, pos)
        if m is None:
            raise FormulaError(f"Unexpected character {formula[pos]!r} at {pos}")
        kind = m.lastgroup
        text = m.group()
        pos = m.end()
        if kind == "ws":
            continue
        if kind == "name" and text.lower() in _KEYWORDS:
            tokens.append(("op", _KEYWORDS[text.lower()]))
        else:
            tokens.append((kind, text))
    return tokens


# ---------------------------------------------------------------------------
# Parser / evaluator
# ---------------------------------------------------------------------------

class _FormulaParser:
    """Evaluates while parsing; precedence low → high: or, and, not, compare, +-, */%, unary, ^."""

    def __init__(self, tokens: List[Tuple[str, str]], scope: Mapping[str, float]):
        self._tokens = tokens
        self._pos = 0
        self._scope = scope

    def _peek(self) -> Optional[str]:
        if self._pos < len(self._tokens):
            return self._tokens[self._pos][1]
        return None

    def _consume(self) -> Tuple[str, str]:
        if self._pos >= len(self._tokens):
            raise FormulaError("Unexpected end of formula")
        tok = self._tokens[self._pos]
        self._pos += 1
        return tok

    def _expect(self, text: str):
        _, tok = self._consume()
        if tok != text:
            raise FormulaError(f"Expected {text!r}, got {tok!r}")

    def parse(self) -> float:
        if not self._tokens:
            raise FormulaError("Empty formula")
        result = self._parse_or()
        if self._peek() is not None:
            raise FormulaError(f"Unexpected token: {self._peek()!r}")
        return result

    def _parse_or(self) -> float:
        left = self._parse_and()
        while self._peek() == "||":
            self._consume()
            right = self._parse_and()
            left = 1.0 if (left or right) else 0.0
        return left

    def _parse_and(self) -> float:
        left = self._parse_not()
        while self._peek() == "&&":
            self._consume()
            right = self._parse_not()
            left = 1.0 if (left and right) else 0.0
        return left

    def _parse_not(self) -> float:
        if self._peek() == "!":
            self._consume()
            return 0.0 if self._parse_not() else 1.0
        return self._parse_comparison()

    def _parse_comparison(self) -> float:
        left = self._parse_additive()
        while self._peek() in ("<", "<=", ">", ">=", "==", "!="):
            op = self._consume()[1]
            right = self._parse_additive()
            if op == "<":
                ok = left < right
            elif op == "<=":
                ok = left <= right
            elif op == ">":
                ok = left > right
            elif op == ">=":
                ok = left >= right
            elif op == "==":
                ok = left == right
            else:
                ok = left != right
            left = 1.0 if ok else 0.0
        return left

    def _parse_additive(self) -> float:
        left = self._parse_term()
        while self._peek() in ("+", "-"):
            op = self._consume()[1]
            right = self._parse_term()
            left = left + right if op == "+" else left - right
        return left

    def _parse_term(self) -> float:
        left = self._parse_unary()
        while self._peek() in ("*", "/", "%"):
            op = self._consume()[1]
            right = self._parse_unary()
            if op == "*":
                left = left * right
            elif op == "/":
                left = left / right
            else:
                left = math.fmod(left, right)
        return left

    def _parse_unary(self) -> float:
        if self._peek() == "-":
            self._consume()
            return -self._parse_unary()
        if self._peek() == "+":
            self._consume()
            return self._parse_unary()
        return self._parse_power()

    def _parse_power(self) -> float:
        base = self._parse_primary()
        if self._peek() in ("^", "**"):
            self._consume()
            exponent = self._parse_unary()
            return math.pow(base, exponent)
        return base

    def _parse_primary(self) -> float:
        kind, tok = self._consume()

        if tok == "(":
            value = self._parse_or()
            self._expect(")")
            return value

        if kind == "num":
            return float(tok)

        if kind == "key":
            return float(self._scope[tok])

        if kind == "name":
            if self._peek() == "(":
                return self._call(tok)
            if tok in self._scope:
                return float(self._scope[tok])
            if tok in CONSTANTS:
                return CONSTANTS[tok]
            return 0.0

        raise FormulaError(f"Unexpected token: {tok!r}")

    def _call(self, name: str) -> float:
        func = FUNCTIONS.get(name)
        if func is None:
            raise FormulaError(f"Unknown function: {name}")
        self._expect("(")
        args = []
        if self._peek() != ")":
            args.append(self._parse_or())
            while self._peek() == ",":
                self._consume()
                args.append(self._parse_or())
        self._expect(")")
        return float(func(*args))


def _split_conditional(formula: str) -> Optional[Tuple[str, str]]:
    """
    Split ``if <cond> (<expr>)`` into (cond, expr).

    The expression is the last top-level parenthesized group, so conditions
    may contain their own parentheses. Returns None for non-conditionals.
    """
    m = re.match(r"^\s*if\b", formula, re.IGNORECASE)
    if m is None:
        return None
    body = formula[m.end():].rstrip()
    if not body.endswith(")"):
        raise FormulaError("Conditional formula must end with '(<expression>)'")

    depth = 0
    for i in range(len(body) - 1, -1, -1):
        ch = body[i]
        if ch == ")":
            depth += 1
        elif ch == "(":
            depth -= 1
            if depth == 0:
                condition = body[:i].strip()
                expression = body[i + 1:-1].strip()
                if not condition:
                    raise FormulaError("Conditional formula has no condition")
                return condition, expression
    raise FormulaError("Unbalanced parentheses in conditional formula")


def _evaluate_expression(expression: str, scope: Mapping[str, float]) -> float:
    return _FormulaParser(_tokenize(expression, scope), scope).parse()


def _normalize(value) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(result) or math.isinf(result):
        return 0.0
    return result


class FormulaEvaluator:
    """
    Stateless evaluator for node formulas.

    evaluate() never raises; try_evaluate() additionally reports why a
    formula collapsed to 0 so callers can surface a diagnostic.
    """

    def try_evaluate(self, formula: Optional[str], scope: Mapping[str, float]) -> Tuple[float, Optional[str]]:
        if formula is None or not str(formula).strip():
            return 0.0, None
        try:
            conditional = _split_conditional(formula)
            if conditional is None:
                return _normalize(_evaluate_expression(formula, scope)), None

            condition, expression = conditional
            if not _normalize(_evaluate_expression(condition, scope)):
                return 0.0, None
            return _normalize(_evaluate_expression(expression, scope)), None
        except (FormulaError, ArithmeticError, ValueError, TypeError, RecursionError) as e:
            logger.warning(f"Formula error in {formula!r}: {e}")
            return 0.0, str(e)

    def evaluate(self, formula: Optional[str], scope: Mapping[str, float]) -> float:
        return self.try_evaluate(formula, scope)[0]


_default_evaluator = FormulaEvaluator()


def evaluate_formula(formula: Optional[str], scope: Mapping[str, float]) -> float:
    """Evaluate a formula against a name → value scope (fail-soft, see module doc)."""
    return _default_evaluator.evaluate(formula, scope)


# ---------------------------------------------------------------------------
# Rounding policy
# ---------------------------------------------------------------------------

def apply_rounding(value: float, kind: str) -> float:
    """
    up → ceiling, down → floor, nearest → half rounds up, none → unchanged.

    Applied to a node quantity after evaluation and before it is accepted
    into the BOM or added to the scope.
    """
    if kind == "up":
        return float(math.ceil(value))
    if kind == "down":
        return float(math.floor(value))
    if kind == "nearest":
        return _js_round(value)
    return value
