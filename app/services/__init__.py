# Services module
from app.services.customer_repository import CustomerRepository
from app.services.segments import RuleEvaluator, SegmentMaterializer

__all__ = [
    "CustomerRepository",
    "RuleEvaluator",
    "SegmentMaterializer",
]
