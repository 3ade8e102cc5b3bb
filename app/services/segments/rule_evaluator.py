"""
Rule Evaluator

Composes condition predicates according to a rule tree and evaluates the
result against a customer collection. The whole tree is compiled into one
predicate before the scan, so:

- an invalid condition anywhere aborts evaluation before any customer is tested
- the collection is scanned once regardless of how many conditions there are
- relative date cutoffs (daysAgo) are read once per evaluation call

Rule format:
{
    "type": "AND" | "OR",
    "conditions": [
        {"field": "totalSpend", "operator": "gt", "value": 500},
        {"type": "OR", "conditions": [...]}
    ]
}
or a bare condition {"field": ..., "operator": ..., "value": ...}.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Set

from app.config import settings
from app.services.segments.predicate_builder import Predicate, build_condition
from app.services.segments.rule_tree import (
    Condition,
    RuleNode,
    iter_conditions,
    parse_rule_tree,
)


@dataclass(frozen=True)
class ConditionOutcome:
    """Result of one leaf condition for one customer."""

    condition: Condition
    matched: bool


@dataclass
class RuleExplanation:
    """Why a customer did or did not match a rule."""

    customer_id: Any
    matched: bool
    outcomes: List[ConditionOutcome] = field(default_factory=list)


class RuleEvaluator:
    """
    Evaluates rule trees against customer collections.

    Customers are any objects exposing `id` and the attributes named in the
    field registry (ORM rows, dataclasses, test doubles).
    """

    def __init__(self, max_depth: Optional[int] = None):
        self.max_depth = max_depth if max_depth is not None else settings.MAX_RULE_DEPTH

    def parse(self, rule: Any) -> RuleNode:
        """Parse and fully validate a rule without evaluating it."""
        node = parse_rule_tree(rule, max_depth=self.max_depth)
        self._compile(node, datetime.now(timezone.utc))
        return node

    def compile(self, rule: Any, now: Optional[datetime] = None) -> Predicate:
        """Compile a rule into a single customer predicate."""
        node = parse_rule_tree(rule, max_depth=self.max_depth)
        return self._compile(node, now or datetime.now(timezone.utc))

    def evaluate(
        self,
        rule: Any,
        customers: Iterable[Any],
        now: Optional[datetime] = None,
    ) -> Set[Any]:
        """
        Return the ids of all customers matching the rule.

        Args:
            rule: Rule tree (dict form or RuleNode)
            customers: Customer collection to scan
            now: Reference time for relative dates; read once for the whole call

        Returns:
            Unordered set of matching customer ids
        """
        predicate = self.compile(rule, now=now)
        return {customer.id for customer in customers if predicate(customer)}

    def explain(self, rule: Any, customer: Any, now: Optional[datetime] = None) -> RuleExplanation:
        """Evaluate every leaf condition for one customer."""
        node = parse_rule_tree(rule, max_depth=self.max_depth)
        moment = now or datetime.now(timezone.utc)
        matched = self._compile(node, moment)(customer)
        outcomes = [
            ConditionOutcome(condition=leaf, matched=build_condition(leaf, now=moment)(customer))
            for leaf in iter_conditions(node)
        ]
        return RuleExplanation(customer_id=customer.id, matched=matched, outcomes=outcomes)

    def _compile(self, node: RuleNode, now: datetime) -> Predicate:
        if isinstance(node, Condition):
            return build_condition(node, now=now)

        predicates = tuple(self._compile(child, now) for child in node.conditions)
        if node.type == "AND":
            return lambda customer: all(p(customer) for p in predicates)
        return lambda customer: any(p(customer) for p in predicates)


def evaluate(rule: Any, customers: Iterable[Any], now: Optional[datetime] = None) -> Set[Any]:
    """Evaluate a rule with the default evaluator."""
    return RuleEvaluator().evaluate(rule, customers, now=now)
