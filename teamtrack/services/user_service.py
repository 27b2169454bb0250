# teamtrack/services/user_service.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from firebase_admin import firestore

from teamtrack.core.store import RecordStore
from teamtrack.errors import Forbidden, InvalidProfile, NotFound
from teamtrack.helper import DEFAULT_ROLE, normalize_email
from teamtrack.models.invitation import ACCEPTED, PENDING, KnownInvitee, PlaceholderInvitee, invitee_ref
from teamtrack.models.user import Principal, ReconcileReport, User
from teamtrack.services.membership_service import MembershipService

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, store: RecordStore, membership: Optional[MembershipService] = None):
        self.store = store
        self.membership = membership or MembershipService(store)

    # ---------- Sign-in ----------
    async def ensure_user(self, principal: Principal) -> User:
        doc = await self.store.get("users", principal.uid)
        existing: Dict[str, Any] = doc.data if doc else {}

        # only fill what is missing; a project join may have left a stub behind
        fields: Dict[str, Any] = {}
        if not existing.get("uid"):
            fields["uid"] = principal.uid
        if not existing.get("email"):
            fields["email"] = normalize_email(principal.email)
        if not existing.get("displayName"):
            fields["displayName"] = principal.display_name or "User"
        if not existing.get("photoURL") and principal.photo_url:
            fields["photoURL"] = principal.photo_url
        if "profileCompleted" not in existing:
            fields["profileCompleted"] = False
        if "createdAt" not in existing:
            fields["createdAt"] = firestore.SERVER_TIMESTAMP

        if fields:
            if doc is None:
                logger.info("Creating user document for %s", principal.uid)
            # merge, and never "projects": a concurrent join may already have written it
            await self.store.set("users", principal.uid, fields, merge=True)
            doc = await self.store.get("users", principal.uid)
        return User.from_doc(principal.uid, doc.data if doc else {})

    async def reconcile_account(self, principal: Principal) -> ReconcileReport:
        """
        Reconciliation pass, run on every sign-in:
        1. placeholders for this email are marked resolved to the real uid
        2. pending invitations addressed to a placeholder are rebound to the uid
           (still pending, the user accepts explicitly)
        3. accepted invitations whose project lost/never got the membership are
           backfilled
        """
        email = normalize_email(principal.email)
        report = ReconcileReport()
        if not email:
            return report

        placeholders = await self.store.query("pendingUsers", [("email", "==", email)])
        for ph in placeholders:
            if ph.get("resolvedUserId"):
                continue
            await self.store.update("pendingUsers", ph.id, {
                "resolvedUserId": principal.uid,
                "resolvedAt": firestore.SERVER_TIMESTAMP,
            })
            report.placeholders_resolved += 1

        pending = await self.store.query("invitations", [("inviteeEmail", "==", email), ("status", "==", PENDING)])
        for inv in pending:
            ref = invitee_ref(inv.get("inviteeId"), email)
            if isinstance(ref, KnownInvitee) and ref.user_id == principal.uid:
                continue
            if isinstance(ref, PlaceholderInvitee):
                logger.info("Rebinding invitation %s from %s to %s", inv.id, ref.placeholder_id, principal.uid)
            await self.store.update("invitations", inv.id, {"inviteeId": principal.uid})
            report.invitations_rebound += 1

        accepted = await self.store.query("invitations", [("inviteeEmail", "==", email), ("status", "==", ACCEPTED)])
        for inv in accepted:
            project_id = inv.get("projectId")
            project = await self.store.get("projects", project_id) if project_id else None
            if project is None:
                continue
            user = await self.store.get("users", principal.uid)
            in_members = principal.uid in (project.get("members") or [])
            in_user = user is not None and project_id in (user.get("projects") or [])
            if in_members and in_user:
                continue
            await self.membership.add_member(
                project_id, principal.uid, inv.get("role") or DEFAULT_ROLE,
                email=email, display_name=principal.display_name,
            )
            report.memberships_backfilled += 1

        if report != ReconcileReport():
            logger.info("Reconciled account %s: %s", principal.uid, report.model_dump())
        return report

    # ---------- Profile ----------
    async def complete_profile(
        self,
        principal: Principal,
        first_name: str,
        last_name: str,
        phone_number: Optional[str] = None,
    ) -> User:
        first_name, last_name = (first_name or "").strip(), (last_name or "").strip()
        if not first_name or not last_name:
            raise InvalidProfile()
        await self.store.set("users", principal.uid, {
            "firstName": first_name,
            "lastName": last_name,
            "displayName": f"{first_name} {last_name}",
            "phoneNumber": phone_number or None,
            "profileCompleted": True,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        }, merge=True)
        doc = await self.store.get("users", principal.uid)
        return User.from_doc(principal.uid, doc.data if doc else {})

    # ---------- Dashboard ----------
    async def set_dashboard_project(self, principal: Principal, project_id: str) -> None:
        project = await self.store.get("projects", project_id)
        if project is None:
            raise NotFound("Project not found")
        if principal.uid not in (project.get("members") or []):
            raise Forbidden("You do not have access to this project")
        await self.store.set("users", principal.uid, {
            "dashboardProjectId": project_id,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        }, merge=True)

    async def get_dashboard_preferences(self, principal: Principal) -> Dict[str, Optional[str]]:
        doc = await self.store.get("users", principal.uid)
        if doc is None:
            raise NotFound("User data not found")
        return {"dashboardProjectId": doc.get("dashboardProjectId")}
