"""
Rule tree value model.

A rule tree is either a single Condition or a RuleGroup joining child
trees with AND / OR. Both are frozen, so a submitted rule cannot change
while it is being evaluated. The dict form produced by to_dict() is the
persisted and wire representation, and parse_rule_tree(to_dict(x)) == x.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, Tuple, Union

from app.exceptions import ValidationError


CONNECTIVES = ("AND", "OR")


@dataclass(frozen=True)
class Condition:
    """A single field/operator/value predicate leaf."""

    field: str
    operator: str
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "operator": self.operator, "value": _thaw(self.value)}


@dataclass(frozen=True)
class RuleGroup:
    """Boolean composition of sub-rules."""

    type: str
    conditions: Tuple["RuleNode", ...]

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "conditions": [c.to_dict() for c in self.conditions]}


RuleNode = Union[Condition, RuleGroup]


def _freeze(value: Any) -> Any:
    # Lists become tuples so a Condition stays hashable and immutable
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


def parse_rule_tree(data: Any, max_depth: int = 32) -> RuleNode:
    """
    Convert the dict form of a rule into a RuleNode.

    Structural problems (wrong shape, unknown connective, empty group,
    excessive nesting) raise ValidationError. Field/operator/value checks are
    left to the predicate builder.
    """
    if isinstance(data, (Condition, RuleGroup)):
        _check_node(data, max_depth)
        return data
    return _parse_node(data, depth=0, max_depth=max_depth, path="rules")


def _check_node(node: RuleNode, max_depth: int) -> None:
    stack = [(node, 0)]
    while stack:
        current, depth = stack.pop()
        if depth > max_depth:
            raise ValidationError(f"Rule nesting exceeds the maximum depth of {max_depth}")
        if isinstance(current, RuleGroup):
            if current.type not in CONNECTIVES:
                raise ValidationError(f"Rule group type must be AND or OR, got {current.type!r}")
            if not current.conditions:
                raise ValidationError("Rule group must contain at least one condition")
            stack.extend((child, depth + 1) for child in current.conditions)


def _parse_node(data: Any, depth: int, max_depth: int, path: str) -> RuleNode:
    if depth > max_depth:
        raise ValidationError(
            f"Rule nesting exceeds the maximum depth of {max_depth}",
            errors=[{"field": path, "message": "too deeply nested"}],
        )

    if isinstance(data, (Condition, RuleGroup)):
        _check_node(data, max_depth - depth)
        return data

    if not isinstance(data, dict):
        raise ValidationError(
            "Rule must be an object",
            errors=[{"field": path, "message": "expected an object"}],
        )

    if "type" in data or "conditions" in data:
        connective = data.get("type")
        if not isinstance(connective, str) or connective.upper() not in CONNECTIVES:
            raise ValidationError(
                f"Rule group type must be AND or OR, got {connective!r}",
                errors=[{"field": f"{path}.type", "message": "expected AND or OR"}],
            )
        children = data.get("conditions")
        if not isinstance(children, list):
            raise ValidationError(
                "Rule group conditions must be a list",
                errors=[{"field": f"{path}.conditions", "message": "expected a list"}],
            )
        if not children:
            raise ValidationError(
                "Rule group must contain at least one condition",
                errors=[{"field": f"{path}.conditions", "message": "empty"}],
            )
        return RuleGroup(
            type=connective.upper(),
            conditions=tuple(
                _parse_node(child, depth + 1, max_depth, f"{path}.conditions[{i}]")
                for i, child in enumerate(children)
            ),
        )

    field = data.get("field")
    operator = data.get("operator")
    if not isinstance(field, str) or not field:
        raise ValidationError(
            "Condition is missing a field",
            errors=[{"field": f"{path}.field", "message": "required"}],
        )
    if not isinstance(operator, str) or not operator:
        raise ValidationError(
            "Condition is missing an operator",
            errors=[{"field": f"{path}.operator", "message": "required"}],
        )
    return Condition(field=field, operator=operator, value=_freeze(data.get("value")))


def iter_conditions(node: RuleNode) -> Iterator[Condition]:
    """Yield every leaf condition, left to right."""
    stack = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, Condition):
            yield current
        else:
            stack.extend(reversed(current.conditions))


def count_conditions(node: RuleNode) -> int:
    return sum(1 for _ in iter_conditions(node))
