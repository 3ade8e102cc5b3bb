from fastapi import APIRouter, status, Query
from sqlalchemy import select, func, or_
from typing import Optional
from datetime import datetime, timezone
from decimal import Decimal
import logging

from app.api.deps import DbSession, CurrentUser
from app.exceptions import ConflictError, NotFoundError
from app.models.customer import Customer, Order
from app.schemas.customer import (
    CustomerCreate,
    CustomerUpdate,
    CustomerResponse,
    CustomerListResponse,
    OrderCreate,
    OrderResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_customer_or_404(db, customer_id: int) -> Customer:
    result = await db.execute(select(Customer).where(Customer.id == customer_id))
    customer = result.scalar_one_or_none()
    if not customer:
        raise NotFoundError("Customer", customer_id)
    return customer


async def _ensure_email_available(db, email: str, exclude_id: Optional[int] = None) -> None:
    query = select(Customer.id).where(Customer.email == email)
    if exclude_id is not None:
        query = query.where(Customer.id != exclude_id)
    result = await db.execute(query)
    if result.first() is not None:
        raise ConflictError(f"A customer with email {email} already exists")


@router.get("/", response_model=CustomerListResponse)
async def list_customers(
    db: DbSession,
    current_user: CurrentUser,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=500),
    search: Optional[str] = None,
):
    """List customers with pagination and search."""
    query = select(Customer)

    if search:
        search_filter = or_(
            Customer.name.ilike(f"%{search}%"),
            Customer.email.ilike(f"%{search}%"),
            Customer.phone.ilike(f"%{search}%"),
        )
        query = query.where(search_filter)

    # Get total count
    count_query = select(func.count()).select_from(query.subquery())
    total_result = await db.execute(count_query)
    total = total_result.scalar()

    # Apply pagination
    offset = (page - 1) * page_size
    query = query.order_by(Customer.id).offset(offset).limit(page_size)

    result = await db.execute(query)
    customers = result.scalars().all()

    return CustomerListResponse(
        items=customers,
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{customer_id}", response_model=CustomerResponse)
async def get_customer(
    customer_id: int,
    db: DbSession,
    current_user: CurrentUser,
):
    """Get a single customer by ID."""
    return await _get_customer_or_404(db, customer_id)


@router.post("/", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
async def create_customer(
    customer_data: CustomerCreate,
    db: DbSession,
    current_user: CurrentUser,
):
    """Create a new customer."""
    await _ensure_email_available(db, customer_data.email)

    customer = Customer(**customer_data.model_dump(), total_spend=0, visit_count=0)
    db.add(customer)
    await db.commit()
    await db.refresh(customer)
    logger.info(f"Customer {customer.id} created")
    return customer


@router.patch("/{customer_id}", response_model=CustomerResponse)
async def update_customer(
    customer_id: int,
    customer_data: CustomerUpdate,
    db: DbSession,
    current_user: CurrentUser,
):
    """Update a customer's contact details.

    Segment snapshots are not recomputed; refresh a segment to pick up changes.
    """
    customer = await _get_customer_or_404(db, customer_id)

    update_data = customer_data.model_dump(exclude_unset=True)
    if update_data.get("email"):
        await _ensure_email_available(db, update_data["email"], exclude_id=customer_id)

    for field, value in update_data.items():
        setattr(customer, field, value)

    await db.commit()
    await db.refresh(customer)
    return customer


@router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_customer(
    customer_id: int,
    db: DbSession,
    current_user: CurrentUser,
):
    """Delete a customer."""
    customer = await _get_customer_or_404(db, customer_id)
    await db.delete(customer)
    await db.commit()
    logger.info(f"Customer {customer_id} deleted")


@router.post(
    "/{customer_id}/orders",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_order(
    customer_id: int,
    order_data: OrderCreate,
    db: DbSession,
    current_user: CurrentUser,
):
    """Record an order and roll it into the customer's spend and visit aggregates."""
    customer = await _get_customer_or_404(db, customer_id)

    amount = Decimal(str(order_data.amount))
    order = Order(customer_id=customer.id, amount=amount, status=order_data.status)
    db.add(order)

    customer.total_spend = Decimal(str(customer.total_spend or 0)) + amount
    customer.visit_count = (customer.visit_count or 0) + 1
    customer.last_visit = datetime.now(timezone.utc)

    await db.commit()
    await db.refresh(order)
    await db.refresh(customer)
    logger.info(f"Order {order.id} recorded for customer {customer.id}")
    return order
