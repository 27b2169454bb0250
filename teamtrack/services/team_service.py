# teamtrack/services/team_service.py
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Dict, List

from teamtrack.core.store import Document, RecordStore
from teamtrack.errors import Forbidden, NotFound, SubscriptionUnavailable
from teamtrack.helper import DEFAULT_ROLE, email_local_part, parse_duration
from teamtrack.models.invitation import PENDING
from teamtrack.models.team import MemberActivity, TeamMember
from teamtrack.models.user import Principal

logger = logging.getLogger(__name__)

UNKNOWN_USER = "Unknown User"


class TeamService:
    """Read-only views over a project's members, invitees and sessions."""

    def __init__(self, store: RecordStore, poll_interval: float = 5.0):
        self.store = store
        self.poll_interval = poll_interval

    async def _get_project(self, project_id: str) -> Document:
        project = await self.store.get("projects", project_id)
        if project is None:
            raise NotFound("Project not found")
        return project

    def _pending_filters(self, project_id: str):
        return [("projectId", "==", project_id), ("status", "==", PENDING)]

    # ===== TEAM LIST =====
    async def list_team(self, project_id: str) -> List[TeamMember]:
        project = await self._get_project(project_id)
        pending = await self.store.query("invitations", self._pending_filters(project_id))
        return await self._build_team(project, pending)

    async def _build_team(self, project: Document, pending: List[Document]) -> List[TeamMember]:
        roles: Dict[str, str] = project.get("memberRoles") or {}
        users = await asyncio.gather(*(self.store.get("users", uid) for uid in project.get("members") or []))

        team: List[TeamMember] = []
        for uid, user in zip(project.get("members") or [], users):
            role = roles.get(uid) or DEFAULT_ROLE
            if user is None:
                team.append(TeamMember(id=uid, name=UNKNOWN_USER, email="No Email", role=role))
                continue
            team.append(TeamMember(
                id=uid,
                name=user.get("displayName") or UNKNOWN_USER,
                email=user.get("email") or "No Email",
                role=role,
                photo_url=user.get("photoURL"),
            ))

        for inv in pending:
            email = inv.get("inviteeEmail", "")
            team.append(TeamMember(
                id=inv.id,
                name=email_local_part(email),
                email=email,
                role=inv.get("role") or DEFAULT_ROLE,
                pending=True,
            ))
        return team

    async def watch_team(self, project_id: str) -> AsyncIterator[List[TeamMember]]:
        """
        Yield the team list now and again whenever the project's pending
        invitations change. Falls back to polling if the store can't subscribe.
        """
        await self._get_project(project_id)
        try:
            subscription = self.store.watch("invitations", self._pending_filters(project_id))
        except SubscriptionUnavailable:
            logger.warning("Subscriptions unavailable, polling team of %s every %ss", project_id, self.poll_interval)
            async for team in self._poll_team(project_id):
                yield team
            return

        try:
            async for pending in subscription:
                project = await self._get_project(project_id)
                yield await self._build_team(project, pending)
        finally:
            subscription.close()

    async def _poll_team(self, project_id: str) -> AsyncIterator[List[TeamMember]]:
        last = None
        while True:
            team = await self.list_team(project_id)
            if team != last:
                last = team
                yield team
            await asyncio.sleep(self.poll_interval)

    # ===== ACTIVITY =====
    async def compute_member_activity(self, project_id: str, acting_user: Principal) -> List[MemberActivity]:
        project = await self._get_project(project_id)
        if acting_user.uid not in (project.get("members") or []):
            raise Forbidden("You do not have access to this project")

        sessions = await self.store.query("sessions", [("projectId", "==", project_id)])

        totals: Dict[str, MemberActivity] = {}
        for session in sessions:
            user_id = session.get("userId")
            if not user_id:
                logger.warning("Session %s has no userId, skipped", session.id)
                continue
            try:
                seconds = parse_duration(session.get("duration"))
            except ValueError as e:
                logger.warning("Session %s skipped: %s", session.id, e)
                continue
            activity = totals.setdefault(user_id, MemberActivity(user_id=user_id))
            activity.total_time_seconds += seconds
            activity.session_count += 1

        roles: Dict[str, str] = project.get("memberRoles") or {}
        users = await asyncio.gather(*(self.store.get("users", uid) for uid in totals))
        for activity, user in zip(totals.values(), users):
            activity.role = roles.get(activity.user_id) or DEFAULT_ROLE
            if user is not None:
                activity.display_name = user.get("displayName") or UNKNOWN_USER
                activity.email = user.get("email")
                activity.photo_url = user.get("photoURL")

        # most active first; sorted() is stable for ties
        return sorted(totals.values(), key=lambda a: a.total_time_seconds, reverse=True)
