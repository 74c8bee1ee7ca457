from fastapi import APIRouter, Depends

from recruit_chat.api import deps
from recruit_chat.models.user import User
from recruit_chat.schemas.user import UserPublic

router = APIRouter()


@router.get("/me", response_model=UserPublic)
def get_profile(current_user: User = Depends(deps.get_current_user)) -> UserPublic:
    return current_user
