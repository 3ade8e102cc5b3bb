from app.schemas.customer import (
    CustomerCreate,
    CustomerUpdate,
    CustomerResponse,
    CustomerListResponse,
    OrderCreate,
    OrderResponse,
)
from app.schemas.auth import (
    UserResponse,
    AuthMeResponse,
    TokenData,
)
from app.schemas.segment import (
    SegmentCreate,
    SegmentUpdate,
    SegmentResponse,
    SegmentListResponse,
    SegmentPreviewRequest,
    SegmentPreviewResponse,
)

__all__ = [
    "CustomerCreate",
    "CustomerUpdate",
    "CustomerResponse",
    "CustomerListResponse",
    "OrderCreate",
    "OrderResponse",
    "UserResponse",
    "AuthMeResponse",
    "TokenData",
    "SegmentCreate",
    "SegmentUpdate",
    "SegmentResponse",
    "SegmentListResponse",
    "SegmentPreviewRequest",
    "SegmentPreviewResponse",
]
