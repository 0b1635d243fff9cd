from collections.abc import Generator
from typing import Annotated, Optional

from fastapi import Depends, Request
from sqlmodel import Session

from chat_gateway.core.db import engine
from chat_gateway.core.errors import ChatError
from chat_gateway.providers.registry import ModelRegistry, get_registry
from chat_gateway.services.identity import Identity, resolve_identity
from chat_gateway.services.resumable import StreamContextHandle, stream_context


def get_db() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_db)]


def get_optional_identity(request: Request, session: SessionDep) -> Optional[Identity]:
    return resolve_identity(session, getattr(request.state, "api_key", None))


OptionalIdentityDep = Annotated[Optional[Identity], Depends(get_optional_identity)]


def get_current_identity(identity: OptionalIdentityDep) -> Identity:
    if identity is None:
        raise ChatError("unauthorized:chat")
    return identity


CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
RegistryDep = Annotated[ModelRegistry, Depends(get_registry)]


def get_stream_context() -> StreamContextHandle:
    return stream_context


StreamContextDep = Annotated[StreamContextHandle, Depends(get_stream_context)]
