"""
Segment Materializer

Runs the rule evaluator at segment create/update time and persists the
matched customer ids as the segment's membership snapshot. Also provides a
preview (count + small sample) that never writes anything.

Membership is a point-in-time snapshot: it changes only through create,
update or refresh, never as a side effect of customer changes. Each write
assigns a freshly computed id list and commits it in one statement, so a
reader sees either the old or the new membership, never a mix.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import NotFoundError, ValidationError
from app.models.customer import Customer
from app.models.segment import Segment
from app.services.customer_repository import CustomerRepository
from app.services.segments.rule_evaluator import RuleEvaluator, RuleExplanation
from app.services.segments.rule_tree import RuleNode


logger = logging.getLogger(__name__)


@dataclass
class SegmentPreview:
    """Result of previewing a rule without saving a segment."""

    count: int
    sample: List[Dict[str, Any]] = field(default_factory=list)
    execution_time_ms: float = 0


def customer_summary(customer: Customer) -> Dict[str, Any]:
    """Compact customer representation used in previews."""
    return {
        "id": customer.id,
        "name": customer.name,
        "email": customer.email,
        "total_spend": float(customer.total_spend or 0),
        "visit_count": customer.visit_count or 0,
        "last_visit": customer.last_visit,
    }


class SegmentMaterializer:
    """Creates, updates and previews rule-based segments."""

    SAMPLE_SIZE = 5

    def __init__(
        self,
        db: AsyncSession,
        customers: Optional[CustomerRepository] = None,
        evaluator: Optional[RuleEvaluator] = None,
    ):
        self.db = db
        self.customers = customers or CustomerRepository(db)
        self.evaluator = evaluator or RuleEvaluator()

    # =========================================================================
    # PREVIEW
    # =========================================================================

    async def preview(self, rules: Any) -> SegmentPreview:
        """
        Count and sample the customers a rule would match.

        Args:
            rules: Rule tree to evaluate

        Returns:
            SegmentPreview with the total count and up to SAMPLE_SIZE customers
            (lowest ids first)
        """
        start = time.monotonic()
        node = self._validate_rules(rules)

        customers = await self.customers.find_all()
        matched = self.evaluator.evaluate(node, customers)

        by_id = {customer.id: customer for customer in customers}
        sample = [customer_summary(by_id[cid]) for cid in sorted(matched)[: self.SAMPLE_SIZE]]

        return SegmentPreview(
            count=len(matched),
            sample=sample,
            execution_time_ms=(time.monotonic() - start) * 1000,
        )

    async def explain(self, rules: Any, customer_id: int) -> RuleExplanation:
        """Show which conditions a single customer passes or fails."""
        node = self._validate_rules(rules)
        customers = await self.customers.find_by_ids([customer_id])
        if not customers:
            raise NotFoundError("Customer", customer_id)
        return self.evaluator.explain(node, customers[0])

    # =========================================================================
    # MATERIALIZATION
    # =========================================================================

    async def create(
        self,
        name: Optional[str],
        description: Optional[str],
        rules: Any,
        created_by_user_id: Optional[int] = None,
    ) -> Segment:
        """Evaluate a rule and persist it as a new segment."""
        name, description = self._validate_fields(name, description)
        node = self._validate_rules(rules)

        matched_ids, elapsed_ms = await self._materialize(node)

        segment = Segment(
            name=name,
            description=description,
            rules=node.to_dict(),
            matched_customer_ids=matched_ids,
            customer_count=len(matched_ids),
            last_evaluated_at=datetime.now(timezone.utc),
            created_by_user_id=created_by_user_id,
        )
        self.db.add(segment)
        await self.db.commit()
        await self.db.refresh(segment)

        logger.info(
            "Segment %s created with %d customers (%.1fms)", segment.id, len(matched_ids), elapsed_ms
        )
        return segment

    async def update(
        self,
        segment_id: int,
        name: Optional[str],
        description: Optional[str],
        rules: Any,
        owner_id: Optional[int] = None,
    ) -> Segment:
        """
        Replace a segment's definition and recompute its membership.

        The previous matched set is discarded, not merged.
        """
        segment = await self.get(segment_id, owner_id=owner_id)
        name, description = self._validate_fields(name, description)
        node = self._validate_rules(rules)

        matched_ids, elapsed_ms = await self._materialize(node)

        segment.name = name
        segment.description = description
        segment.rules = node.to_dict()
        self._swap_membership(segment, matched_ids)
        await self.db.commit()
        await self.db.refresh(segment)

        logger.info(
            "Segment %s updated with %d customers (%.1fms)", segment.id, len(matched_ids), elapsed_ms
        )
        return segment

    async def refresh(self, segment_id: int, owner_id: Optional[int] = None) -> Segment:
        """Re-evaluate a segment's stored rule against current customers."""
        segment = await self.get(segment_id, owner_id=owner_id)
        node = self._validate_rules(segment.rules)

        matched_ids, elapsed_ms = await self._materialize(node)

        self._swap_membership(segment, matched_ids)
        await self.db.commit()
        await self.db.refresh(segment)

        logger.info(
            "Segment %s refreshed with %d customers (%.1fms)", segment.id, len(matched_ids), elapsed_ms
        )
        return segment

    # =========================================================================
    # REPOSITORY OPERATIONS
    # =========================================================================

    async def get(self, segment_id: int, owner_id: Optional[int] = None) -> Segment:
        """
        Load a segment by id.

        With ``owner_id`` set, segments owned by someone else are reported as
        not found so their existence is not disclosed.
        """
        query = select(Segment).where(Segment.id == segment_id)
        if owner_id is not None:
            query = query.where(Segment.created_by_user_id == owner_id)
        result = await self.db.execute(query)
        segment = result.scalar_one_or_none()
        if not segment:
            raise NotFoundError("Segment", segment_id)
        return segment

    async def list_segments(
        self,
        owner_id: Optional[int] = None,
        page: int = 1,
        page_size: int = 20,
        search: Optional[str] = None,
    ) -> Tuple[List[Segment], int]:
        query = select(Segment)
        if owner_id is not None:
            query = query.where(Segment.created_by_user_id == owner_id)
        if search:
            query = query.where(Segment.name.ilike(f"%{search}%"))

        total_result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        total = total_result.scalar() or 0

        offset = (page - 1) * page_size
        query = query.order_by(Segment.created_at.desc(), Segment.id.desc()).offset(offset).limit(page_size)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def delete(self, segment_id: int, owner_id: Optional[int] = None) -> None:
        segment = await self.get(segment_id, owner_id=owner_id)
        await self.db.delete(segment)
        await self.db.commit()
        logger.info("Segment %s deleted", segment_id)

    async def list_members(
        self, segment_id: int, page: int = 1, page_size: int = 20, owner_id: Optional[int] = None
    ) -> Tuple[List[Customer], int]:
        """Page through the customers in a segment's snapshot."""
        segment = await self.get(segment_id, owner_id=owner_id)
        return await self.customers.page_by_ids(segment.matched_customer_ids or [], page, page_size)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _materialize(self, node: RuleNode) -> Tuple[List[int], float]:
        start = time.monotonic()
        customers = await self.customers.find_all()
        matched = self.evaluator.evaluate(node, customers)
        return sorted(matched), (time.monotonic() - start) * 1000

    @staticmethod
    def _swap_membership(segment: Segment, matched_ids: List[int]) -> None:
        # Assign a new list; never mutate the persisted one in place
        segment.matched_customer_ids = list(matched_ids)
        segment.customer_count = len(matched_ids)
        segment.last_evaluated_at = datetime.now(timezone.utc)

    @staticmethod
    def _validate_fields(name: Optional[str], description: Optional[str]) -> Tuple[str, str]:
        errors = []
        if not name or not name.strip():
            errors.append({"field": "name", "message": "required"})
        if not description or not description.strip():
            errors.append({"field": "description", "message": "required"})
        if errors:
            raise ValidationError("Segment name and description are required", errors=errors)
        return name.strip(), description.strip()

    def _validate_rules(self, rules: Any) -> RuleNode:
        if rules is None or rules == {}:
            raise ValidationError(
                "Segment rules are required",
                errors=[{"field": "rules", "message": "required"}],
            )
        return self.evaluator.parse(rules)
