from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import auth

from teamtrack.config import settings
from teamtrack.core.store import RecordStore
from teamtrack.models.user import Principal
from teamtrack.services.invitation_service import InvitationService
from teamtrack.services.membership_service import MembershipService
from teamtrack.services.project_service import ProjectService
from teamtrack.services.team_service import TeamService
from teamtrack.services.user_service import UserService

security = HTTPBearer()


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Principal:
    token = credentials.credentials
    try:
        decoded = auth.verify_id_token(token)
    except Exception as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {e}")
    email: Optional[str] = decoded.get("email")
    if not email:
        raise HTTPException(status_code=401, detail="Token has no email")
    return Principal(
        uid=decoded["uid"],
        email=email,
        display_name=decoded.get("name"),
        photo_url=decoded.get("picture"),
    )


# ===== store + services (one store per process, see main.lifespan) =====
def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_membership_service(store: RecordStore = Depends(get_store)) -> MembershipService:
    return MembershipService(store, retry_attempts=settings.MEMBERSHIP_RETRY_ATTEMPTS)


def get_invitation_service(
    store: RecordStore = Depends(get_store),
    membership: MembershipService = Depends(get_membership_service),
) -> InvitationService:
    return InvitationService(store, membership, use_batch=settings.USE_BATCH_WRITES)


def get_team_service(store: RecordStore = Depends(get_store)) -> TeamService:
    return TeamService(store, poll_interval=settings.TEAM_POLL_INTERVAL_SECONDS)


def get_project_service(
    store: RecordStore = Depends(get_store),
    membership: MembershipService = Depends(get_membership_service),
) -> ProjectService:
    return ProjectService(store, membership)


def get_user_service(
    store: RecordStore = Depends(get_store),
    membership: MembershipService = Depends(get_membership_service),
) -> UserService:
    return UserService(store, membership)
