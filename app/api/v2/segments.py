"""
Segment API Endpoints

Includes:
- Field and operator catalogue for rule builders
- Rule preview and single-customer explanation
- Textual and natural-language rule authoring
- Segment CRUD with membership materialization
- Snapshot refresh and member listing
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import DbSession, CurrentUser
from app.services.ai_gateway import AIGateway, get_ai_gateway
from app.schemas.segment import (
    ConditionOutcomeResponse,
    FieldCatalogResponse,
    FieldInfo,
    NaturalLanguageRuleRequest,
    OperatorInfo,
    RuleExplainRequest,
    RuleExplainResponse,
    RuleExpressionRequest,
    RuleParseResponse,
    SegmentCreate,
    SegmentListResponse,
    SegmentMembersResponse,
    SegmentPreviewRequest,
    SegmentPreviewResponse,
    SegmentResponse,
    SegmentUpdate,
)
from app.services.segments import (
    FIELD_DEFINITIONS,
    SegmentMaterializer,
    SegmentRuleTranslator,
    parse_rule_expression,
)
from app.services.segments.fields import OPERATOR_LABELS
from app.services.segments.rule_tree import count_conditions

router = APIRouter()

Generator = Annotated[AIGateway, Depends(get_ai_gateway)]


# ============================================
# Rule authoring
# ============================================


@router.get("/fields", response_model=FieldCatalogResponse)
async def list_segment_fields(current_user: CurrentUser):
    """Fields and operators available for segment rules."""
    return FieldCatalogResponse(
        fields=[
            FieldInfo(
                name=definition.name,
                display_name=definition.display_name,
                data_type=definition.data_type.value,
                description=definition.description,
                operators=[
                    OperatorInfo(name=name, label=OPERATOR_LABELS[name])
                    for name in sorted(definition.operators)
                ],
            )
            for definition in FIELD_DEFINITIONS.values()
        ]
    )


@router.post("/preview", response_model=SegmentPreviewResponse)
async def preview_segment(
    request: SegmentPreviewRequest,
    db: DbSession,
    current_user: CurrentUser,
):
    """Count the customers a rule would match, with a small sample. Nothing is saved."""
    preview = await SegmentMaterializer(db).preview(request.rules)
    return SegmentPreviewResponse(
        count=preview.count,
        sample=preview.sample,
        execution_time_ms=preview.execution_time_ms,
    )


@router.post("/explain", response_model=RuleExplainResponse)
async def explain_rule(
    request: RuleExplainRequest,
    db: DbSession,
    current_user: CurrentUser,
):
    """Show which conditions a customer passes or fails."""
    explanation = await SegmentMaterializer(db).explain(request.rules, request.customer_id)
    return RuleExplainResponse(
        customer_id=explanation.customer_id,
        matched=explanation.matched,
        conditions=[
            ConditionOutcomeResponse(**outcome.condition.to_dict(), matched=outcome.matched)
            for outcome in explanation.outcomes
        ],
    )


@router.post("/rules/parse", response_model=RuleParseResponse)
async def parse_rule_text(
    request: RuleExpressionRequest,
    current_user: CurrentUser,
):
    """Convert a textual rule such as 'totalSpend > 500 AND visitCount >= 3'."""
    node = parse_rule_expression(request.expression)
    return RuleParseResponse(rules=node.to_dict(), condition_count=count_conditions(node))


@router.post("/ai/parse", response_model=RuleParseResponse)
async def parse_natural_language(
    request: NaturalLanguageRuleRequest,
    current_user: CurrentUser,
    generator: Generator,
):
    """Convert a plain-English audience description into a rule."""
    node = await SegmentRuleTranslator(generator).translate(request.query)
    return RuleParseResponse(rules=node.to_dict(), condition_count=count_conditions(node))


# ============================================
# Segment CRUD
# ============================================


@router.get("/", response_model=SegmentListResponse)
async def list_segments(
    db: DbSession,
    current_user: CurrentUser,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
):
    """List the current user's segments."""
    segments, total = await SegmentMaterializer(db).list_segments(
        owner_id=current_user.id,
        page=page,
        page_size=page_size,
        search=search,
    )
    return SegmentListResponse(
        items=segments,
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/", response_model=SegmentResponse, status_code=status.HTTP_201_CREATED)
async def create_segment(
    data: SegmentCreate,
    db: DbSession,
    current_user: CurrentUser,
):
    """Create a segment and materialize its membership."""
    return await SegmentMaterializer(db).create(
        name=data.name,
        description=data.description,
        rules=data.rules,
        created_by_user_id=current_user.id,
    )


@router.get("/{segment_id}", response_model=SegmentResponse)
async def get_segment(
    segment_id: int,
    db: DbSession,
    current_user: CurrentUser,
):
    """Get a specific segment."""
    return await SegmentMaterializer(db).get(segment_id, owner_id=current_user.id)


@router.put("/{segment_id}", response_model=SegmentResponse)
async def update_segment(
    segment_id: int,
    data: SegmentUpdate,
    db: DbSession,
    current_user: CurrentUser,
):
    """Replace a segment's definition and recompute its membership."""
    return await SegmentMaterializer(db).update(
        segment_id,
        name=data.name,
        description=data.description,
        rules=data.rules,
        owner_id=current_user.id,
    )


@router.delete("/{segment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_segment(
    segment_id: int,
    db: DbSession,
    current_user: CurrentUser,
):
    """Delete a segment."""
    await SegmentMaterializer(db).delete(segment_id, owner_id=current_user.id)


@router.post("/{segment_id}/refresh", response_model=SegmentResponse)
async def refresh_segment(
    segment_id: int,
    db: DbSession,
    current_user: CurrentUser,
):
    """Re-evaluate the stored rule against current customer data."""
    return await SegmentMaterializer(db).refresh(segment_id, owner_id=current_user.id)


@router.get("/{segment_id}/customers", response_model=SegmentMembersResponse)
async def list_segment_customers(
    segment_id: int,
    db: DbSession,
    current_user: CurrentUser,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    """Page through the customers captured in the segment's last materialization."""
    materializer = SegmentMaterializer(db)
    segment = await materializer.get(segment_id, owner_id=current_user.id)
    customers, total = await materializer.list_members(
        segment_id, page=page, page_size=page_size, owner_id=current_user.id
    )
    return SegmentMembersResponse(
        items=customers,
        total=total,
        page=page,
        page_size=page_size,
        segment_id=segment.id,
        last_evaluated_at=segment.last_evaluated_at,
    )
