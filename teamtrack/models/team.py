from typing import Optional

from pydantic import BaseModel


class TeamMember(BaseModel):
    id: str
    name: str
    email: str
    role: str
    photo_url: Optional[str] = None
    pending: bool = False


class MemberActivity(BaseModel):
    user_id: str
    total_time_seconds: int = 0
    session_count: int = 0
    display_name: str = "Unknown User"
    email: Optional[str] = None
    photo_url: Optional[str] = None
    role: str = "Member"
