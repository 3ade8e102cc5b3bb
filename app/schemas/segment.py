"""
Segment Schemas

Rule trees travel as plain JSON objects and are validated by the rule
engine rather than by pydantic, so an unknown field or operator is reported
with its rule error code instead of a generic request validation error.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Any, Dict, List


RULE_EXAMPLE = {
    "type": "AND",
    "conditions": [
        {"field": "totalSpend", "operator": "gt", "value": 500},
        {"field": "visitCount", "operator": "gte", "value": 3},
    ],
}


class SegmentBase(BaseModel):
    """Base segment schema."""
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1)
    rules: Dict[str, Any] = Field(..., json_schema_extra={"example": RULE_EXAMPLE})


class SegmentCreate(SegmentBase):
    """Schema for creating a segment."""
    pass


class SegmentUpdate(SegmentBase):
    """Schema for updating a segment. Updates replace the whole definition."""
    pass


class SegmentResponse(BaseModel):
    """Segment response schema."""
    id: int
    name: str
    description: str
    rules: Dict[str, Any]
    customer_count: int = 0
    matched_customer_ids: List[int] = Field(default_factory=list)
    created_by_user_id: Optional[int] = None
    last_evaluated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SegmentListResponse(BaseModel):
    """Paginated segment list response."""
    items: list[SegmentResponse]
    total: int
    page: int
    page_size: int


# Preview

class SegmentPreviewRequest(BaseModel):
    """Evaluate a rule without saving it."""
    rules: Dict[str, Any] = Field(..., json_schema_extra={"example": RULE_EXAMPLE})


class CustomerSample(BaseModel):
    id: int
    name: str
    email: str
    total_spend: float = 0
    visit_count: int = 0
    last_visit: Optional[datetime] = None


class SegmentPreviewResponse(BaseModel):
    """Count and sample of matching customers."""
    count: int
    sample: list[CustomerSample]
    execution_time_ms: Optional[float] = None


class RuleExplainRequest(BaseModel):
    """Check a rule against one customer."""
    rules: Dict[str, Any]
    customer_id: int


class ConditionOutcomeResponse(BaseModel):
    field: str
    operator: str
    value: Any = None
    matched: bool


class RuleExplainResponse(BaseModel):
    customer_id: int
    matched: bool
    conditions: list[ConditionOutcomeResponse]


# Rule authoring

class RuleExpressionRequest(BaseModel):
    """Textual rule, e.g. 'totalSpend > 500 AND visitCount >= 3'."""
    expression: str = Field(..., min_length=1, max_length=2000)


class NaturalLanguageRuleRequest(BaseModel):
    """Plain-English audience description."""
    query: str = Field(..., min_length=1, max_length=1000)


class RuleParseResponse(BaseModel):
    """A validated rule tree, ready to preview or save."""
    rules: Dict[str, Any]
    condition_count: int


# Field catalogue

class OperatorInfo(BaseModel):
    name: str
    label: str


class FieldInfo(BaseModel):
    name: str
    display_name: str
    data_type: str
    description: str = ""
    operators: list[OperatorInfo]


class FieldCatalogResponse(BaseModel):
    fields: list[FieldInfo]


# Members

class SegmentMember(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    total_spend: float = 0
    visit_count: int = 0
    last_visit: Optional[datetime] = None

    class Config:
        from_attributes = True


class SegmentMembersResponse(BaseModel):
    """Paginated snapshot members."""
    items: list[SegmentMember]
    total: int
    page: int
    page_size: int
    segment_id: int
    last_evaluated_at: Optional[datetime] = None
