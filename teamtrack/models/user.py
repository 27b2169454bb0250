from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as supplied by Firebase Auth."""
    uid: str
    email: str
    display_name: Optional[str] = None
    photo_url: Optional[str] = None


class User(BaseModel):
    uid: str
    email: str = ""
    display_name: str = ""
    photo_url: Optional[str] = None
    projects: List[str] = []
    profile_completed: bool = False
    dashboard_project_id: Optional[str] = None

    @classmethod
    def from_doc(cls, doc_id: str, data: Dict[str, Any]) -> "User":
        return cls(
            uid=data.get("uid") or doc_id,
            email=data.get("email") or "",
            display_name=data.get("displayName") or "",
            photo_url=data.get("photoURL"),
            projects=list(data.get("projects") or []),
            profile_completed=bool(data.get("profileCompleted", False)),
            dashboard_project_id=data.get("dashboardProjectId"),
        )


class ReconcileReport(BaseModel):
    placeholders_resolved: int = 0
    invitations_rebound: int = 0
    memberships_backfilled: int = 0


class CompleteProfileIn(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    phone_number: Optional[str] = None


class DashboardProjectIn(BaseModel):
    project_id: str
