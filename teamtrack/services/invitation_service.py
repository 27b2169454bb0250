# teamtrack/services/invitation_service.py
from __future__ import annotations

import logging
from typing import AsyncIterator, List, Optional

from firebase_admin import firestore

from teamtrack.core.store import RecordStore
from teamtrack.errors import (
    AlreadyExists,
    AlreadyMember,
    AlreadyProcessed,
    DuplicateInvitation,
    Forbidden,
    NotFound,
    PermissionDenied,
    StoreUnavailable,
)
from teamtrack.helper import (
    DEFAULT_ROLE,
    has_role,
    invitation_key,
    make_placeholder_id,
    normalize_email,
    validate_invite_role,
)
from teamtrack.models.invitation import ACCEPTED, PENDING, REJECTED, Invitation
from teamtrack.models.user import Principal
from teamtrack.services.membership_service import MembershipService

logger = logging.getLogger(__name__)


def _sort_newest_first(invitations: List[Invitation]) -> List[Invitation]:
    # server timestamps can still be unresolved on a fresh local write
    return sorted(
        invitations,
        key=lambda inv: inv.created_at.timestamp() if inv.created_at else float("inf"),
        reverse=True,
    )


class InvitationService:
    def __init__(
        self,
        store: RecordStore,
        membership: Optional[MembershipService] = None,
        use_batch: bool = True,
    ):
        self.store = store
        self.membership = membership or MembershipService(store)
        self.use_batch = use_batch

    # ===== CREATE =====
    async def create_invitation(
        self,
        project_id: str,
        invitee_email: str,
        role: Optional[str],
        acting_user: Principal,
    ) -> str:
        email = normalize_email(invitee_email)

        project = await self.store.get("projects", project_id)
        if project is None:
            raise NotFound("Project not found")

        if project.get("ownerId") != acting_user.uid and not has_role(
            project.get("memberRoles"), acting_user.uid, "admin"
        ):
            raise PermissionDenied()

        role = validate_invite_role(role)

        users = await self.store.query("users", [("email", "==", email)], limit=1)
        if users:
            invitee_id = users[0].get("uid") or users[0].id
            if invitee_id in (project.get("members") or []):
                raise AlreadyMember(f"{email} is already a member of this project")
            placeholder = False
        else:
            invitee_id = make_placeholder_id()
            placeholder = True

        existing = await self.store.query("invitations", [
            ("projectId", "==", project_id),
            ("inviteeEmail", "==", email),
            ("status", "==", PENDING),
        ], limit=1)
        if existing:
            raise DuplicateInvitation(f"{email} already has a pending invitation to this project")

        # placeholder, invitation and key land together or not at all
        invitation_id = self.store.new_id("invitations")
        batch = self.store.batch()
        if placeholder:
            logger.info("No account for %s, creating placeholder %s", email, invitee_id)
            batch.set("pendingUsers", invitee_id, {
                "email": email,
                "createdAt": firestore.SERVER_TIMESTAMP,
                "invitedBy": acting_user.uid,
            })
        batch.set("invitations", invitation_id, {
            "projectId": project_id,
            "projectName": project.get("name", ""),
            "inviterId": acting_user.uid,
            "inviterName": acting_user.display_name or "A user",
            "inviteeId": invitee_id,
            "inviteeEmail": email,
            "role": role,
            "status": PENDING,
            "createdAt": firestore.SERVER_TIMESTAMP,
        })
        # fails the whole batch if another pending invite for this email got there first
        batch.create("invitationKeys", invitation_key(project_id, email), {
            "invitationId": invitation_id,
            "createdAt": firestore.SERVER_TIMESTAMP,
        })
        try:
            await batch.commit()
        except AlreadyExists:
            raise DuplicateInvitation(f"{email} already has a pending invitation to this project") from None
        logger.info("Created invitation %s for %s to project %s", invitation_id, email, project_id)

        # denormalised summary, best-effort
        summary = {"invitationId": invitation_id, "email": email, "role": role}
        try:
            await self.store.update("projects", project_id, {
                "pendingInvitations": firestore.ArrayUnion([summary]),
                "updatedAt": firestore.SERVER_TIMESTAMP,
            })
        except (StoreUnavailable, NotFound) as e:
            logger.warning("Could not record invitation %s on project %s: %s", invitation_id, project_id, e)

        return invitation_id

    # ===== ACCEPT / REJECT =====
    async def _load_for_response(self, invitation_id: str, acting_user: Principal) -> Invitation:
        doc = await self.store.get("invitations", invitation_id)
        if doc is None:
            raise NotFound("Invitation not found")
        invitation = Invitation.from_doc(doc.id, doc.data)
        if normalize_email(invitation.invitee_email) != normalize_email(acting_user.email):
            raise Forbidden()
        if invitation.status != PENDING:
            raise AlreadyProcessed()
        return invitation

    def _finalize_fields(self, status: str, acting_user: Principal) -> dict:
        fields = {"status": status, "respondedAt": firestore.SERVER_TIMESTAMP}
        if status == ACCEPTED:
            # placeholder / stale ids are superseded by the real account
            fields["inviteeId"] = acting_user.uid
        return fields

    def _stage_close(self, batch, invitation: Invitation, fields: dict) -> None:
        batch.update("invitations", invitation.id, fields)
        # frees the (project, email) slot for a later invite
        batch.delete("invitationKeys", invitation_key(invitation.project_id, invitation.invitee_email))

    async def _close(self, invitation: Invitation, fields: dict) -> None:
        batch = self.store.batch()
        self._stage_close(batch, invitation, fields)
        await batch.commit()

    async def _drop_summary(self, invitation: Invitation) -> None:
        try:
            await self.store.update("projects", invitation.project_id, {
                "pendingInvitations": firestore.ArrayRemove([invitation.summary()]),
            })
        except (StoreUnavailable, NotFound) as e:
            logger.warning("Could not clear summary of invitation %s: %s", invitation.id, e)

    async def accept_invitation(self, invitation_id: str, acting_user: Principal) -> Invitation:
        invitation = await self._load_for_response(invitation_id, acting_user)
        role = invitation.role or DEFAULT_ROLE
        uid = acting_user.uid

        project = await self.store.get("projects", invitation.project_id)
        if project is None:
            raise NotFound("The project for this invitation no longer exists")

        finalize = self._finalize_fields(ACCEPTED, acting_user)

        if uid in (project.get("members") or []):
            logger.info("User %s already in project %s, only closing invitation", uid, invitation.project_id)
            await self._close(invitation, finalize)
        elif self.use_batch:
            user_doc = await self.store.get("users", uid)
            batch = self.store.batch()
            self.membership.stage_member(
                batch, invitation.project_id, uid, role, user_doc,
                email=normalize_email(acting_user.email), display_name=acting_user.display_name,
            )
            # status write last
            self._stage_close(batch, invitation, finalize)
            await batch.commit()
        else:
            await self.membership.add_member(
                invitation.project_id, uid, role,
                email=normalize_email(acting_user.email), display_name=acting_user.display_name,
            )
            await self._close(invitation, finalize)

        logger.info("User %s accepted invitation %s as %s", uid, invitation.id, role)
        await self._drop_summary(invitation)
        return invitation.model_copy(update={"status": ACCEPTED, "invitee_id": uid})

    async def reject_invitation(self, invitation_id: str, acting_user: Principal) -> Invitation:
        invitation = await self._load_for_response(invitation_id, acting_user)
        await self._close(invitation, self._finalize_fields(REJECTED, acting_user))
        logger.info("User %s rejected invitation %s", acting_user.uid, invitation.id)
        await self._drop_summary(invitation)
        return invitation.model_copy(update={"status": REJECTED})

    # ===== READ =====
    def _mine_filters(self, acting_user: Principal):
        return [("inviteeEmail", "==", normalize_email(acting_user.email)), ("status", "==", PENDING)]

    async def list_my_invitations(self, acting_user: Principal) -> List[Invitation]:
        docs = await self.store.query("invitations", self._mine_filters(acting_user))
        return _sort_newest_first([Invitation.from_doc(d.id, d.data) for d in docs])

    async def watch_my_invitations(self, acting_user: Principal) -> AsyncIterator[List[Invitation]]:
        subscription = self.store.watch("invitations", self._mine_filters(acting_user))
        try:
            async for docs in subscription:
                yield _sort_newest_first([Invitation.from_doc(d.id, d.data) for d in docs])
        finally:
            subscription.close()
