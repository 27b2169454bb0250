# teamtrack/models/project.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Project(BaseModel):
    id: str
    name: str = ""
    description: str = ""
    owner_id: str = ""
    members: List[str] = []
    member_roles: Dict[str, str] = {}
    pending_invitations: List[Dict[str, Any]] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc_id: str, data: Dict[str, Any]) -> "Project":
        return cls(
            id=doc_id,
            name=data.get("name", ""),
            description=data.get("description", ""),
            owner_id=data.get("ownerId", ""),
            members=list(data.get("members") or []),
            member_roles=dict(data.get("memberRoles") or {}),
            pending_invitations=list(data.get("pendingInvitations") or []),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )


class CreateProjectRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: str = Field("", max_length=2000)
