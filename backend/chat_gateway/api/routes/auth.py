import structlog
from fastapi import APIRouter

from chat_gateway.api.deps import SessionDep
from chat_gateway.models import GuestCredentials, UserPublic
from chat_gateway.services.identity import provision_user

router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.get_logger()


@router.post("/guest", response_model=GuestCredentials, status_code=201)
def create_guest(session: SessionDep):
    """
    Provision a guest identity. The API key is only ever returned here.
    """
    user, api_key = provision_user(session, tier="guest")
    logger.info("guest_provisioned", user_id=str(user.id))
    return GuestCredentials(
        user=UserPublic(id=user.id, tier=user.tier, created_at=user.created_at),
        api_key=api_key,
    )
