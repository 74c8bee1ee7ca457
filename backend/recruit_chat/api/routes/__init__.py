from fastapi import APIRouter

from recruit_chat.api.routes import (
    conversations,
    realtime,
    users,
)


api_router = APIRouter()
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(conversations.router, prefix="/conversations", tags=["conversations"])
api_router.include_router(realtime.router, prefix="/realtime", tags=["realtime"])
