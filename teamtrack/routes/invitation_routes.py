# teamtrack/routes/invitation_routes.py
from fastapi import APIRouter, Depends, HTTPException

from teamtrack.deps import get_current_user, get_invitation_service
from teamtrack.errors import TeamTrackError
from teamtrack.models.invitation import CreateInvitationRequest
from teamtrack.models.user import Principal
from teamtrack.services.invitation_service import InvitationService

router = APIRouter(prefix="/api", tags=["invitations"])


# CREATE
@router.post("/projects/{project_id}/invitations", summary="Invite a user to a project by email")
async def create_invitation(
    project_id: str,
    req: CreateInvitationRequest,
    user: Principal = Depends(get_current_user),
    service: InvitationService = Depends(get_invitation_service),
):
    try:
        invitation_id = await service.create_invitation(project_id, req.email, req.role, user)
        return {
            "status": "ok",
            "message": "Invitation sent successfully",
            "invitation_id": invitation_id,
        }
    except TeamTrackError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Internal error: {e}")


# LIST (mine)
@router.get("/invitations", summary="Pending invitations for the current user")
async def list_invitations(
    user: Principal = Depends(get_current_user),
    service: InvitationService = Depends(get_invitation_service),
):
    try:
        items = await service.list_my_invitations(user)
        return {"status": "ok", "items": [i.model_dump() for i in items]}
    except TeamTrackError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Internal error: {e}")


# ACCEPT
@router.post("/invitations/{invitation_id}/accept", summary="Accept an invitation")
async def accept_invitation(
    invitation_id: str,
    user: Principal = Depends(get_current_user),
    service: InvitationService = Depends(get_invitation_service),
):
    try:
        invitation = await service.accept_invitation(invitation_id, user)
        return {
            "status": "ok",
            "message": f'You have joined the project "{invitation.project_name}" as a {invitation.role}',
            "project_id": invitation.project_id,
            "role": invitation.role,
        }
    except TeamTrackError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Internal error: {e}")


# REJECT
@router.post("/invitations/{invitation_id}/reject", summary="Decline an invitation")
async def reject_invitation(
    invitation_id: str,
    user: Principal = Depends(get_current_user),
    service: InvitationService = Depends(get_invitation_service),
):
    try:
        await service.reject_invitation(invitation_id, user)
        return {"status": "ok", "message": "Invitation rejected"}
    except TeamTrackError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Internal error: {e}")
