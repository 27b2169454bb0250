# teamtrack/models/invitation.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, EmailStr, Field

from teamtrack.helper import DEFAULT_ROLE, is_placeholder_id

PENDING = "pending"
ACCEPTED = "accepted"
REJECTED = "rejected"


@dataclass(frozen=True)
class KnownInvitee:
    user_id: str


@dataclass(frozen=True)
class PlaceholderInvitee:
    """Invitee without an account yet; resolved by the sign-in reconciliation pass."""
    email: str
    placeholder_id: str


InviteeRef = Union[KnownInvitee, PlaceholderInvitee]


def invitee_ref(invitee_id: Optional[str], invitee_email: str) -> InviteeRef:
    if not invitee_id or is_placeholder_id(invitee_id):
        return PlaceholderInvitee(email=invitee_email, placeholder_id=invitee_id or "")
    return KnownInvitee(user_id=invitee_id)


class Invitation(BaseModel):
    id: str
    project_id: str
    project_name: str = ""
    inviter_id: str = ""
    inviter_name: str = ""
    invitee_id: str = ""
    invitee_email: str
    role: str = DEFAULT_ROLE
    status: str = PENDING
    created_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc_id: str, data: Dict[str, Any]) -> "Invitation":
        return cls(
            id=doc_id,
            project_id=data.get("projectId", ""),
            project_name=data.get("projectName", ""),
            inviter_id=data.get("inviterId", ""),
            inviter_name=data.get("inviterName", ""),
            invitee_id=data.get("inviteeId", ""),
            invitee_email=data.get("inviteeEmail", ""),
            role=data.get("role") or DEFAULT_ROLE,
            status=data.get("status", PENDING),
            created_at=data.get("createdAt"),
            responded_at=data.get("respondedAt"),
        )

    @property
    def invitee(self) -> InviteeRef:
        return invitee_ref(self.invitee_id, self.invitee_email)

    def summary(self) -> Dict[str, str]:
        """Entry denormalised into project.pendingInvitations."""
        return {"invitationId": self.id, "email": self.invitee_email, "role": self.role}


class CreateInvitationRequest(BaseModel):
    email: EmailStr
    role: Optional[str] = Field(DEFAULT_ROLE, description="Admin|Member|Viewer")
