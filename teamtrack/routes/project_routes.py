# teamtrack/routes/project_routes.py
import json

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from teamtrack.deps import get_current_user, get_project_service, get_team_service
from teamtrack.errors import TeamTrackError
from teamtrack.models.project import CreateProjectRequest
from teamtrack.models.user import Principal
from teamtrack.services.project_service import ProjectService
from teamtrack.services.team_service import TeamService

router = APIRouter(prefix="/api/projects", tags=["projects"])


# CREATE
@router.post("", summary="Create project")
async def create_project(
    req: CreateProjectRequest,
    user: Principal = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
):
    try:
        project = await service.create_project(user, req.name, req.description)
        return {"status": "ok", "message": "Project created", **project.model_dump()}
    except TeamTrackError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Internal error: {e}")


# LIST (mine)
@router.get("", summary="Projects the current user belongs to")
async def list_projects(
    user: Principal = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
):
    try:
        items = await service.list_user_projects(user)
        return {"status": "ok", "items": [p.model_dump() for p in items]}
    except TeamTrackError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Internal error: {e}")


# GET (detail)
@router.get("/{project_id}", summary="Get project detail")
async def get_project(
    project_id: str,
    user: Principal = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
):
    try:
        project = await service.get_project_for_member(project_id, user)
        return {"status": "ok", **project.model_dump()}
    except TeamTrackError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Internal error: {e}")


# TEAM
@router.get("/{project_id}/team", summary="Members plus pending invitees")
async def get_team(
    project_id: str,
    user: Principal = Depends(get_current_user),
    projects: ProjectService = Depends(get_project_service),
    team: TeamService = Depends(get_team_service),
):
    try:
        await projects.get_project_for_member(project_id, user)
        items = await team.list_team(project_id)
        return {"status": "ok", "items": [m.model_dump() for m in items]}
    except TeamTrackError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Internal error: {e}")


@router.get("/{project_id}/team/stream", summary="Team list as server-sent events")
async def stream_team(
    project_id: str,
    user: Principal = Depends(get_current_user),
    projects: ProjectService = Depends(get_project_service),
    team: TeamService = Depends(get_team_service),
):
    try:
        await projects.get_project_for_member(project_id, user)
    except TeamTrackError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    async def _events():
        async for members in team.watch_team(project_id):
            payload = json.dumps([m.model_dump() for m in members])
            yield f"event: team\ndata: {payload}\n\n"

    return StreamingResponse(_events(), media_type="text/event-stream")


# ACTIVITY
@router.get("/{project_id}/activity", summary="Tracked time per member, most active first")
async def get_activity(
    project_id: str,
    user: Principal = Depends(get_current_user),
    team: TeamService = Depends(get_team_service),
):
    try:
        items = await team.compute_member_activity(project_id, user)
        return {"status": "ok", "items": [a.model_dump() for a in items]}
    except TeamTrackError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Internal error: {e}")
