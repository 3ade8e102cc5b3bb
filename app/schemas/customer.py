from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional
from app.models.customer import OrderStatus


class CustomerBase(BaseModel):
    """Base customer schema."""
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=20)


class CustomerCreate(CustomerBase):
    """Schema for creating a customer."""
    pass


class CustomerUpdate(BaseModel):
    """Schema for updating a customer (all fields optional).

    Spend and visit aggregates are maintained by orders and cannot be set here.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=20)


class CustomerResponse(CustomerBase):
    """Schema for customer response."""
    id: int
    total_spend: float = 0
    visit_count: int = 0
    last_visit: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CustomerListResponse(BaseModel):
    """Paginated customer list response."""
    items: list[CustomerResponse]
    total: int
    page: int
    page_size: int


class OrderCreate(BaseModel):
    """Schema for recording an order."""
    amount: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING


class OrderResponse(BaseModel):
    """Order response schema."""
    id: int
    customer_id: int
    amount: float
    status: OrderStatus
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
