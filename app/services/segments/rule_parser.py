"""
Textual rule expressions.

Parses strings such as

    totalSpend > 500 AND (visitCount >= 3 OR lastVisit daysAgo 90)

into rule trees with a small recursive-descent parser:

    expression := term ("OR" term)*
    term       := factor ("AND" factor)*
    factor     := "(" expression ")" | condition
    condition  := FIELD OPERATOR LITERAL

OPERATOR is a comparison symbol (> >= < <= = ==) or a registry operator name
(gt, between, startsWith, ...). Symbols are mapped per field type: on number
fields they mean gt/gte/lt/lte/eq, on date fields > and < mean after/before,
and on string fields = means equals. LITERAL is a number, a quoted string or
a bare word (dates, "start,end" ranges).
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Union

from app.exceptions import InvalidFieldTypeError, UnsupportedFieldError, ValidationError
from app.services.segments.fields import FieldType, get_field
from app.services.segments.rule_evaluator import RuleEvaluator
from app.services.segments.rule_tree import Condition, RuleGroup, RuleNode


_TOKEN_RE = re.compile(
    r"""
      (?P<ws>\s+)
    | (?P<lparen>\()
    | (?P<rparen>\))
    | (?P<op>>=|<=|==|>|<|=)
    | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    | (?P<word>[^\s()"'<>=]+)
    """,
    re.VERBOSE,
)

_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")

_SYMBOLS = {
    FieldType.NUMBER: {">": "gt", ">=": "gte", "<": "lt", "<=": "lte", "=": "eq", "==": "eq"},
    FieldType.DATE: {">": "after", "<": "before"},
    FieldType.STRING: {"=": "equals", "==": "equals"},
}

_KEYWORDS = ("AND", "OR")


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    pos: int


def tokenize(text: str) -> List[Token]:
    tokens = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise _syntax_error(f"Unexpected character {text[pos]!r}", pos)
        kind = match.lastgroup
        if kind != "ws":
            tokens.append(Token(kind, match.group(), pos))
        pos = match.end()
    return tokens


def _syntax_error(message: str, pos: int) -> ValidationError:
    return ValidationError(
        f"{message} at position {pos}",
        errors=[{"field": "expression", "message": message, "position": pos}],
    )


class _Parser:
    def __init__(self, text: str, max_depth: int):
        self.text = text
        self.tokens = tokenize(text)
        self.index = 0
        self.max_depth = max_depth

    # -- token helpers --------------------------------------------------

    def _peek(self) -> Optional[Token]:
        if self.index < len(self.tokens):
            return self.tokens[self.index]
        return None

    def _advance(self) -> Token:
        token = self._peek()
        if token is None:
            raise _syntax_error("Unexpected end of expression", len(self.text))
        self.index += 1
        return token

    def _at_keyword(self, keyword: str) -> bool:
        token = self._peek()
        return token is not None and token.kind == "word" and token.text.upper() == keyword

    # -- grammar --------------------------------------------------------

    def parse(self) -> RuleNode:
        if not self.tokens:
            raise _syntax_error("Expression is empty", 0)
        node = self._expression(depth=0)
        token = self._peek()
        if token is not None:
            raise _syntax_error(f"Unexpected {token.text!r}", token.pos)
        return node

    def _expression(self, depth: int) -> RuleNode:
        terms = [self._term(depth)]
        while self._at_keyword("OR"):
            self._advance()
            terms.append(self._term(depth))
        return _join("OR", terms)

    def _term(self, depth: int) -> RuleNode:
        factors = [self._factor(depth)]
        while self._at_keyword("AND"):
            self._advance()
            factors.append(self._factor(depth))
        return _join("AND", factors)

    def _factor(self, depth: int) -> RuleNode:
        token = self._advance()
        if token.kind == "lparen":
            if depth >= self.max_depth:
                raise _syntax_error(
                    f"Parentheses nested deeper than {self.max_depth} levels", token.pos
                )
            node = self._expression(depth + 1)
            closing = self._advance()
            if closing.kind != "rparen":
                raise _syntax_error(f"Expected ')' but found {closing.text!r}", closing.pos)
            return node
        self.index -= 1
        return self._condition()

    def _condition(self) -> Condition:
        field_token = self._advance()
        if field_token.kind != "word" or field_token.text.upper() in _KEYWORDS:
            raise _syntax_error(f"Expected a field name but found {field_token.text!r}", field_token.pos)

        definition = get_field(field_token.text)
        if definition is None:
            raise UnsupportedFieldError(field_token.text)

        op_token = self._advance()
        if op_token.kind == "op":
            operator = _SYMBOLS[definition.data_type].get(op_token.text)
            if operator is None:
                raise InvalidFieldTypeError(
                    definition.name, op_token.text, definition.data_type.value
                )
        elif op_token.kind == "word":
            operator = op_token.text
        else:
            raise _syntax_error(f"Expected an operator but found {op_token.text!r}", op_token.pos)

        value_token = self._advance()
        if value_token.kind == "string":
            value = re.sub(r"\\(.)", r"\1", value_token.text[1:-1])
        elif value_token.kind == "word":
            value = _literal(value_token.text, definition.data_type)
        else:
            raise _syntax_error(f"Expected a value but found {value_token.text!r}", value_token.pos)

        return Condition(field=definition.name, operator=operator, value=value)


def _literal(text: str, data_type: FieldType) -> Union[int, float, str]:
    if data_type is not FieldType.STRING and _NUMBER_RE.match(text):
        return float(text) if "." in text else int(text)
    return text


def _join(connective: str, nodes: List[RuleNode]) -> RuleNode:
    if len(nodes) == 1:
        return nodes[0]
    flat = []
    for node in nodes:
        if isinstance(node, RuleGroup) and node.type == connective:
            flat.extend(node.conditions)
        else:
            flat.append(node)
    return RuleGroup(type=connective, conditions=tuple(flat))


def parse_rule_expression(text: str, evaluator: Optional[RuleEvaluator] = None) -> RuleNode:
    """
    Parse a textual rule expression into a validated rule tree.

    Raises:
        ValidationError: syntax errors, with the offending position
        RuleError subclasses: unknown fields, operators or bad values
    """
    evaluator = evaluator or RuleEvaluator()
    if not isinstance(text, str):
        raise ValidationError("Expression must be a string")
    node = _Parser(text, evaluator.max_depth).parse()
    return evaluator.parse(node)
