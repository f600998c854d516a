from fastapi import APIRouter, Depends

from ..deps import get_current_user
from ..schemas import UserOut

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserOut)
async def whoami(current_user: UserOut = Depends(get_current_user)):
    """Return the user behind the current access token."""
    return current_user
