# teamtrack/services/project_service.py
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from firebase_admin import firestore

from teamtrack.core.store import RecordStore
from teamtrack.errors import Forbidden, NotFound, TeamTrackError
from teamtrack.helper import DEFAULT_ROLE, normalize_email
from teamtrack.models.invitation import ACCEPTED
from teamtrack.models.project import Project
from teamtrack.models.user import Principal
from teamtrack.services.membership_service import MembershipService

logger = logging.getLogger(__name__)


class ProjectService:
    def __init__(self, store: RecordStore, membership: Optional[MembershipService] = None):
        self.store = store
        self.membership = membership or MembershipService(store)

    # ===== CREATE =====
    async def create_project(self, principal: Principal, name: str, description: str = "") -> Project:
        project_id = await self.store.add("projects", {
            "name": name.strip(),
            "description": description or "",
            "ownerId": principal.uid,
            "members": [principal.uid],
            "memberRoles": {principal.uid: "owner"},
            "pendingInvitations": [],
            "createdAt": firestore.SERVER_TIMESTAMP,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        })
        logger.info("Project %s created by %s", project_id, principal.uid)

        await self.store.set("users", principal.uid, {
            "projects": firestore.ArrayUnion([project_id]),
            "updatedAt": firestore.SERVER_TIMESTAMP,
        }, merge=True)
        return await self.get_project(project_id)

    # ===== READ (DETAIL) =====
    async def get_project(self, project_id: str) -> Project:
        doc = await self.store.get("projects", project_id)
        if doc is None:
            raise NotFound("Project not found")
        return Project.from_doc(doc.id, doc.data)

    async def get_project_for_member(self, project_id: str, principal: Principal) -> Project:
        project = await self.get_project(project_id)
        if principal.uid not in project.members:
            raise Forbidden("You do not have access to this project")
        return project

    # ===== READ (LIST) =====
    async def list_user_projects(self, principal: Principal) -> List[Project]:
        """
        Merge three sources, since older clients left them out of sync:
        1) projects whose members contain the uid
        2) projects of accepted invitations for the email
        3) ids listed on the user document
        Anything found via 2/3 but missing the membership is repaired.
        """
        by_id: Dict[str, Project] = {}

        docs = await self.store.query(
            "projects", [("members", "array_contains", principal.uid)], order_by="createdAt", descending=True
        )
        for d in docs:
            by_id[d.id] = Project.from_doc(d.id, d.data)

        wanted: Dict[str, str] = {}
        email = normalize_email(principal.email)
        if email:
            accepted = await self.store.query(
                "invitations", [("inviteeEmail", "==", email), ("status", "==", ACCEPTED)]
            )
            for inv in accepted:
                if inv.get("projectId"):
                    wanted.setdefault(inv.get("projectId"), inv.get("role") or DEFAULT_ROLE)

        user = await self.store.get("users", principal.uid)
        for project_id in (user.get("projects") or []) if user else []:
            wanted.setdefault(project_id, DEFAULT_ROLE)

        for project_id, role in wanted.items():
            if project_id in by_id:
                continue
            try:
                project = await self.get_project(project_id)
                if principal.uid not in project.members:
                    logger.info("Repairing membership of %s in project %s", principal.uid, project_id)
                    await self.membership.add_member(
                        project_id, principal.uid, role, email=email, display_name=principal.display_name
                    )
                    project = await self.get_project(project_id)
            except TeamTrackError as e:
                logger.warning("Skipping project %s for %s: %s", project_id, principal.uid, e)
                continue
            by_id[project_id] = project

        return list(by_id.values())
