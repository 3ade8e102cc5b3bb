from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Enum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from app.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Customer(Base):
    """Customer model.

    total_spend, visit_count and last_visit are aggregates maintained by the
    order endpoint; segmentation only ever reads them.
    """

    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(20))

    total_spend = Column(Numeric(12, 2), nullable=False, default=0)
    visit_count = Column(Integer, nullable=False, default=0)
    last_visit = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    orders = relationship("Order", back_populates="customer", cascade="all, delete-orphan", passive_deletes=True)

    def __repr__(self):
        return f"<Customer {self.name}>"


class Order(Base):
    """A purchase recorded against a customer."""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.PENDING)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    customer = relationship("Customer", back_populates="orders")

    def __repr__(self):
        return f"<Order {self.id} customer={self.customer_id} amount={self.amount}>"
