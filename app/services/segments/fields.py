"""
Field registry for segment rules.

Rules may only reference the fields declared here. Each field carries its
data type and a typed accessor, so a rule never reaches into arbitrary
customer attributes.
"""

from dataclasses import dataclass
from enum import Enum
from operator import attrgetter
from typing import Any, Callable, Dict, FrozenSet


class FieldType(str, Enum):
    """Data types a rule field can have."""

    NUMBER = "number"
    DATE = "date"
    STRING = "string"


OPERATORS_BY_TYPE: Dict[FieldType, FrozenSet[str]] = {
    FieldType.NUMBER: frozenset({"gt", "gte", "lt", "lte", "eq"}),
    FieldType.DATE: frozenset({"before", "after", "between", "daysAgo"}),
    FieldType.STRING: frozenset({"contains", "startsWith", "endsWith", "equals"}),
}

ALL_OPERATORS: FrozenSet[str] = frozenset().union(*OPERATORS_BY_TYPE.values())

OPERATOR_LABELS: Dict[str, str] = {
    "gt": "Greater than",
    "gte": "Greater than or equal to",
    "lt": "Less than",
    "lte": "Less than or equal to",
    "eq": "Equal to",
    "before": "Before",
    "after": "After",
    "between": "Between (inclusive)",
    "daysAgo": "More than N days ago",
    "contains": "Contains",
    "startsWith": "Starts with",
    "endsWith": "Ends with",
    "equals": "Equals",
}


@dataclass(frozen=True)
class FieldDefinition:
    """Definition of a field that can be used in segment rules."""

    name: str
    display_name: str
    data_type: FieldType
    accessor: Callable[[Any], Any]
    description: str = ""

    @property
    def operators(self) -> FrozenSet[str]:
        return OPERATORS_BY_TYPE[self.data_type]


FIELD_DEFINITIONS: Dict[str, FieldDefinition] = {
    "totalSpend": FieldDefinition(
        "totalSpend",
        "Total Spend",
        FieldType.NUMBER,
        attrgetter("total_spend"),
        "Lifetime order amount",
    ),
    "visitCount": FieldDefinition(
        "visitCount",
        "Visit Count",
        FieldType.NUMBER,
        attrgetter("visit_count"),
        "Number of orders placed",
    ),
    "lastVisit": FieldDefinition(
        "lastVisit",
        "Last Visit",
        FieldType.DATE,
        attrgetter("last_visit"),
        "When the most recent order was placed",
    ),
    "createdAt": FieldDefinition(
        "createdAt",
        "Customer Since",
        FieldType.DATE,
        attrgetter("created_at"),
        "When the customer record was created",
    ),
    "email": FieldDefinition(
        "email",
        "Email",
        FieldType.STRING,
        attrgetter("email"),
        "Customer email address",
    ),
    "name": FieldDefinition(
        "name",
        "Name",
        FieldType.STRING,
        attrgetter("name"),
        "Customer full name",
    ),
}


def get_field(name: str) -> FieldDefinition | None:
    return FIELD_DEFINITIONS.get(name)
