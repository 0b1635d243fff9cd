from fastapi import APIRouter

from chat_gateway.api.routes import auth, catalog, chat, conversations, utils

api_router = APIRouter()
api_router.include_router(utils.router)
api_router.include_router(auth.router)
api_router.include_router(catalog.router)
api_router.include_router(chat.router)
api_router.include_router(conversations.router)
