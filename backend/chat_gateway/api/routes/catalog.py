from typing import List

from fastapi import APIRouter

from chat_gateway.providers.registry import selectable_models
from chat_gateway.schemas import ChatModelPublic

router = APIRouter(prefix="/models", tags=["models"])


@router.get("", response_model=List[ChatModelPublic])
def list_models():
    return [
        ChatModelPublic(id=model.id, name=model.name, description=model.description)
        for model in selectable_models()
    ]
