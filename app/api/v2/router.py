from fastapi import APIRouter
from app.api.v2 import (
    auth,
    customers,
    segments,
)

api_router = APIRouter()

# Include all v2 routers
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(customers.router, prefix="/customers", tags=["customers"])
api_router.include_router(segments.router, prefix="/segments", tags=["segments"])
