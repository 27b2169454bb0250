from fastapi import APIRouter, Depends, HTTPException

from teamtrack.deps import get_current_user, get_user_service
from teamtrack.errors import TeamTrackError
from teamtrack.models.user import CompleteProfileIn, DashboardProjectIn, Principal
from teamtrack.services.user_service import UserService

router = APIRouter(prefix="/user", tags=["user"])


@router.post("/session", summary="Call after sign-in: ensures the user record and links pending invitations")
async def start_session(
    user: Principal = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    try:
        profile = await service.ensure_user(user)
        report = await service.reconcile_account(user)
        return {"status": "ok", "user": profile.model_dump(), "reconciled": report.model_dump()}
    except TeamTrackError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Internal error: {e}")


@router.patch("/profile", summary="Complete profile")
async def complete_profile(
    body: CompleteProfileIn,
    user: Principal = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    try:
        profile = await service.complete_profile(user, body.first_name, body.last_name, body.phone_number)
        return {"status": "ok", "message": "Profile updated", "user": profile.model_dump()}
    except TeamTrackError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Internal error: {e}")


@router.get("/dashboard", summary="Dashboard preferences")
async def get_dashboard(
    user: Principal = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    try:
        prefs = await service.get_dashboard_preferences(user)
        return {"status": "ok", **prefs}
    except TeamTrackError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Internal error: {e}")


@router.put("/dashboard", summary="Remember the last viewed project")
async def set_dashboard(
    body: DashboardProjectIn,
    user: Principal = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    try:
        await service.set_dashboard_project(user, body.project_id)
        return {"status": "ok", "dashboardProjectId": body.project_id}
    except TeamTrackError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Internal error: {e}")
