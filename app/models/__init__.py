from app.models.customer import Customer, Order, OrderStatus
from app.models.user import User
from app.models.segment import Segment

__all__ = [
    "Customer",
    "Order",
    "OrderStatus",
    "User",
    "Segment",
]
