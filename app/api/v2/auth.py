from fastapi import APIRouter

from app.api.deps import CurrentUser
from app.schemas.auth import AuthMeResponse, UserResponse

router = APIRouter()


@router.get("/me", response_model=AuthMeResponse)
async def get_current_user_info(current_user: CurrentUser):
    """Get current authenticated user information."""
    return AuthMeResponse(user=UserResponse.model_validate(current_user))
