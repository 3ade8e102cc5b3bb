"""
Segment model.

A segment is a named, persisted snapshot of the customers that matched its
rule tree when it was last materialized.
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, JSON
from sqlalchemy.sql import func
from app.database import Base


class Segment(Base):
    """
    Rule-based customer segment.

    rules holds the canonical rule tree, e.g.
    {
        "type": "AND",
        "conditions": [
            {"field": "totalSpend", "operator": "gt", "value": 500},
            {
                "type": "OR",
                "conditions": [
                    {"field": "visitCount", "operator": "gte", "value": 3},
                    {"field": "lastVisit", "operator": "daysAgo", "value": 90}
                ]
            }
        ]
    }

    matched_customer_ids is replaced wholesale on every materialization and is
    not kept in sync with later customer changes.
    """
    __tablename__ = "segments"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)

    rules = Column(JSON, nullable=False)

    # Materialized membership (sorted customer ids)
    matched_customer_ids = Column(JSON, nullable=False, default=list)
    customer_count = Column(Integer, nullable=False, default=0)
    last_evaluated_at = Column(DateTime(timezone=True))

    created_by_user_id = Column(Integer, ForeignKey("api_users.id", ondelete="SET NULL"), index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<Segment {self.name} ({self.customer_count})>"
