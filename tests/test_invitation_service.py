"""Tests for teamtrack.services.invitation_service (the reconciler)."""

import copy
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from teamtrack.errors import (
    AlreadyMember,
    AlreadyProcessed,
    DuplicateInvitation,
    Forbidden,
    InvalidRole,
    NotFound,
    PermissionDenied,
    StoreUnavailable,
)
from teamtrack.helper import invitation_key, is_placeholder_id
from teamtrack.models.user import Principal


def _snapshot(store):
    return copy.deepcopy(store._data)


# ---------------------------------------------------------------------------
# create_invitation
# ---------------------------------------------------------------------------


class TestCreateInvitation:
    @pytest.mark.asyncio
    async def test_unknown_email_gets_placeholder(self, store, project, owner, invitations):
        inv_id = await invitations.create_invitation(project, "A@x.com", "Member", owner)

        inv = await store.get("invitations", inv_id)
        assert inv.get("status") == "pending"
        assert inv.get("inviteeEmail") == "a@x.com"
        assert inv.get("projectName") == "Apollo"
        assert inv.get("inviterName") == "Olive Owner"
        assert is_placeholder_id(inv.get("inviteeId"))

        placeholder = await store.get("pendingUsers", inv.get("inviteeId"))
        assert placeholder.get("email") == "a@x.com"
        assert placeholder.get("invitedBy") == owner.uid

        project_doc = await store.get("projects", project)
        assert project_doc.get("pendingInvitations") == [
            {"invitationId": inv_id, "email": "a@x.com", "role": "Member"}
        ]

    @pytest.mark.asyncio
    async def test_existing_user_is_referenced_by_uid(self, store, project, owner, invitations):
        await store.set("users", "u2", {"uid": "u2", "email": "b@x.com", "projects": []})
        inv_id = await invitations.create_invitation(project, "b@x.com", "Viewer", owner)

        inv = await store.get("invitations", inv_id)
        assert inv.get("inviteeId") == "u2"
        assert await store.query("pendingUsers") == []

    @pytest.mark.asyncio
    async def test_already_member(self, store, project, owner, invitations):
        with pytest.raises(AlreadyMember):
            await invitations.create_invitation(project, owner.email, "Member", owner)

    @pytest.mark.asyncio
    async def test_duplicate_pending_invitation(self, store, project, owner, invitations):
        await invitations.create_invitation(project, "a@x.com", "Member", owner)
        before = _snapshot(store)

        with pytest.raises(DuplicateInvitation):
            await invitations.create_invitation(project, "a@x.com", "Admin", owner)

        assert _snapshot(store) == before
        pending = await store.query("invitations", [("inviteeEmail", "==", "a@x.com"), ("status", "==", "pending")])
        assert len(pending) == 1

    @pytest.mark.asyncio
    async def test_reinvite_after_rejection_is_allowed(self, store, project, owner, alice, invitations):
        first = await invitations.create_invitation(project, alice.email, "Member", owner)
        await invitations.reject_invitation(first, alice)
        second = await invitations.create_invitation(project, alice.email, "Member", owner)
        assert second != first

    @pytest.mark.asyncio
    async def test_plain_member_cannot_invite(self, store, project, owner, mallory, invitations):
        await store.update("projects", project, {"members": ["u1", mallory.uid], f"memberRoles.{mallory.uid}": "Member"})
        with pytest.raises(PermissionDenied):
            await invitations.create_invitation(project, "a@x.com", "Member", mallory)

    @pytest.mark.asyncio
    async def test_admin_can_invite(self, store, project, mallory, invitations):
        await store.update("projects", project, {"members": ["u1", mallory.uid], f"memberRoles.{mallory.uid}": "Admin"})
        inv_id = await invitations.create_invitation(project, "a@x.com", "Member", mallory)
        assert (await store.get("invitations", inv_id)).get("inviterId") == mallory.uid

    @pytest.mark.asyncio
    async def test_invalid_role(self, project, owner, invitations):
        with pytest.raises(InvalidRole):
            await invitations.create_invitation(project, "a@x.com", "Superuser", owner)

    @pytest.mark.asyncio
    async def test_missing_project(self, owner, invitations):
        with pytest.raises(NotFound):
            await invitations.create_invitation("nope", "a@x.com", "Member", owner)

    @pytest.mark.asyncio
    async def test_failed_write_leaves_no_placeholder(self, store, project, owner, invitations):
        with patch("teamtrack.core.memory_store.MemoryBatch.commit", AsyncMock(side_effect=StoreUnavailable())):
            with pytest.raises(StoreUnavailable):
                await invitations.create_invitation(project, "new@x.com", "Member", owner)

        assert await store.query("pendingUsers") == []
        assert await store.query("invitations") == []
        assert await store.query("invitationKeys") == []
        assert (await store.get("projects", project)).get("pendingInvitations") == []

    @pytest.mark.asyncio
    async def test_concurrent_invite_for_same_email(self, store, project, owner, invitations):
        # another request committed its invitation after this one passed the pending check
        await store.set("invitationKeys", invitation_key(project, "a@x.com"), {"invitationId": "other"})

        with pytest.raises(DuplicateInvitation):
            await invitations.create_invitation(project, "A@x.com", "Member", owner)

        assert await store.query("invitations") == []
        assert await store.query("pendingUsers") == []

    @pytest.mark.asyncio
    async def test_key_released_when_invitation_closes(self, store, project, owner, alice, invitations):
        inv_id = await invitations.create_invitation(project, alice.email, "Member", owner)
        key = invitation_key(project, alice.email)
        assert (await store.get("invitationKeys", key)).get("invitationId") == inv_id

        await invitations.accept_invitation(inv_id, alice)

        assert await store.get("invitationKeys", key) is None

    @pytest.mark.asyncio
    async def test_summary_failure_does_not_block(self, store, project, owner, invitations):
        real_update = store.update

        async def update(collection, doc_id, fields, timeout=None):
            if collection == "projects":
                raise StoreUnavailable()
            return await real_update(collection, doc_id, fields, timeout=timeout)

        with patch.object(store, "update", side_effect=update):
            inv_id = await invitations.create_invitation(project, "a@x.com", "Member", owner)

        assert (await store.get("invitations", inv_id)).get("status") == "pending"
        assert (await store.get("projects", project)).get("pendingInvitations") == []


# ---------------------------------------------------------------------------
# accept / reject
# ---------------------------------------------------------------------------


@pytest.fixture(params=["batched", "sequential"])
def reconciler(request, invitations, sequential_invitations):
    return invitations if request.param == "batched" else sequential_invitations


class TestAcceptInvitation:
    @pytest.mark.asyncio
    async def test_signup_then_accept(self, store, project, owner, alice, reconciler):
        inv_id = await reconciler.create_invitation(project, alice.email, "Member", owner)

        await reconciler.accept_invitation(inv_id, alice)

        project_doc = await store.get("projects", project)
        assert alice.uid in project_doc.get("members")
        assert project_doc.get("memberRoles")[alice.uid] == "Member"
        assert project_doc.get("pendingInvitations") == []

        user = await store.get("users", alice.uid)
        assert project in user.get("projects")
        assert user.get("displayName") == "Alice"

        inv = await store.get("invitations", inv_id)
        assert inv.get("status") == "accepted"
        assert inv.get("inviteeId") == alice.uid
        assert inv.get("respondedAt") is not None

    @pytest.mark.asyncio
    async def test_role_propagates(self, store, project, owner, alice, reconciler):
        inv_id = await reconciler.create_invitation(project, alice.email, "Admin", owner)
        await reconciler.accept_invitation(inv_id, alice)
        assert (await store.get("projects", project)).get("memberRoles")[alice.uid] == "Admin"

    @pytest.mark.asyncio
    async def test_missing_role_defaults_to_member(self, store, project, owner, alice, reconciler):
        inv_id = await reconciler.create_invitation(project, alice.email, "Member", owner)
        await store.update("invitations", inv_id, {"role": None})
        await reconciler.accept_invitation(inv_id, alice)
        assert (await store.get("projects", project)).get("memberRoles")[alice.uid] == "Member"

    @pytest.mark.asyncio
    async def test_accept_is_terminal(self, store, project, owner, alice, reconciler):
        inv_id = await reconciler.create_invitation(project, alice.email, "Member", owner)
        await reconciler.accept_invitation(inv_id, alice)
        before = _snapshot(store)

        with pytest.raises(AlreadyProcessed):
            await reconciler.accept_invitation(inv_id, alice)

        assert _snapshot(store) == before
        assert (await store.get("projects", project)).get("members").count(alice.uid) == 1

    @pytest.mark.asyncio
    async def test_identity_mismatch(self, store, project, owner, alice, mallory, reconciler):
        inv_id = await reconciler.create_invitation(project, alice.email, "Member", owner)
        before = _snapshot(store)

        with pytest.raises(Forbidden):
            await reconciler.accept_invitation(inv_id, mallory)

        assert _snapshot(store) == before

    @pytest.mark.asyncio
    async def test_email_match_is_case_insensitive(self, store, project, owner, alice, reconciler):
        inv_id = await reconciler.create_invitation(project, alice.email, "Member", owner)
        shouty = Principal(uid=alice.uid, email="A@X.COM")
        await reconciler.accept_invitation(inv_id, shouty)
        assert (await store.get("invitations", inv_id)).get("status") == "accepted"

    @pytest.mark.asyncio
    async def test_missing_invitation(self, alice, reconciler):
        with pytest.raises(NotFound):
            await reconciler.accept_invitation("nope", alice)

    @pytest.mark.asyncio
    async def test_already_member_only_closes_invitation(self, store, project, owner, alice, reconciler):
        inv_id = await reconciler.create_invitation(project, alice.email, "Admin", owner)
        # joined through another path meanwhile, as a Viewer
        await reconciler.membership.add_member(project, alice.uid, "Viewer", email=alice.email)

        await reconciler.accept_invitation(inv_id, alice)

        project_doc = await store.get("projects", project)
        assert project_doc.get("members").count(alice.uid) == 1
        assert project_doc.get("memberRoles")[alice.uid] == "Viewer"
        assert (await store.get("invitations", inv_id)).get("status") == "accepted"

    @pytest.mark.asyncio
    async def test_existing_user_keeps_other_projects(self, store, project, owner, alice, reconciler):
        await store.set("users", alice.uid, {"uid": alice.uid, "email": alice.email, "displayName": "Al", "projects": ["Q"]})
        inv_id = await reconciler.create_invitation(project, alice.email, "Member", owner)
        await reconciler.accept_invitation(inv_id, alice)

        user = await store.get("users", alice.uid)
        assert user.get("projects") == ["Q", project]
        assert user.get("displayName") == "Al"

    @pytest.mark.asyncio
    async def test_mixed_case_email_still_found_on_reinvite(self, store, project, owner, reconciler, team):
        bob = Principal(uid="bob-uid", email="Bob@X.com", display_name="Bob")
        inv_id = await reconciler.create_invitation(project, "bob@x.com", "Member", owner)
        # accepts before any /user/session call, so the user doc is created here
        await reconciler.accept_invitation(inv_id, bob)

        assert (await store.get("users", bob.uid)).get("email") == "bob@x.com"
        with pytest.raises(AlreadyMember):
            await reconciler.create_invitation(project, "Bob@X.com", "Member", owner)

        members = await team.list_team(project)
        assert [m.id for m in members].count(bob.uid) == 1
        assert not any(m.pending for m in members)


class TestBatchedAccept:
    @pytest.mark.asyncio
    async def test_failed_commit_changes_nothing(self, store, project, owner, alice, invitations):
        inv_id = await invitations.create_invitation(project, alice.email, "Member", owner)
        before = _snapshot(store)

        with patch("teamtrack.core.memory_store.MemoryBatch.commit", AsyncMock(side_effect=StoreUnavailable())):
            with pytest.raises(StoreUnavailable):
                await invitations.accept_invitation(inv_id, alice)

        assert _snapshot(store) == before
        # retry after the outage converges
        await invitations.accept_invitation(inv_id, alice)
        assert (await store.get("invitations", inv_id)).get("status") == "accepted"


class TestSequentialAccept:
    @pytest.mark.asyncio
    async def test_status_written_last(self, store, project, owner, alice, sequential_invitations):
        inv_id = await sequential_invitations.create_invitation(project, alice.email, "Member", owner)

        # only the closing write goes through a batch on this path
        with patch("teamtrack.core.memory_store.MemoryBatch.commit", AsyncMock(side_effect=StoreUnavailable())):
            with pytest.raises(StoreUnavailable):
                await sequential_invitations.accept_invitation(inv_id, alice)

        # membership landed, invitation still pending, so a retry is allowed
        assert alice.uid in (await store.get("projects", project)).get("members")
        assert (await store.get("invitations", inv_id)).get("status") == "pending"

        await sequential_invitations.accept_invitation(inv_id, alice)
        project_doc = await store.get("projects", project)
        assert project_doc.get("members").count(alice.uid) == 1
        assert (await store.get("invitations", inv_id)).get("status") == "accepted"


class TestRejectInvitation:
    @pytest.mark.asyncio
    async def test_reject(self, store, project, owner, alice, invitations):
        inv_id = await invitations.create_invitation(project, alice.email, "Member", owner)
        await invitations.reject_invitation(inv_id, alice)

        inv = await store.get("invitations", inv_id)
        assert inv.get("status") == "rejected"
        assert inv.get("respondedAt") is not None
        project_doc = await store.get("projects", project)
        assert alice.uid not in project_doc.get("members")
        assert project_doc.get("pendingInvitations") == []
        assert await store.get("users", alice.uid) is None

    @pytest.mark.asyncio
    async def test_reject_then_accept(self, project, owner, alice, invitations):
        inv_id = await invitations.create_invitation(project, alice.email, "Member", owner)
        await invitations.reject_invitation(inv_id, alice)
        with pytest.raises(AlreadyProcessed):
            await invitations.accept_invitation(inv_id, alice)

    @pytest.mark.asyncio
    async def test_reject_wrong_user(self, project, owner, alice, mallory, invitations):
        inv_id = await invitations.create_invitation(project, alice.email, "Member", owner)
        with pytest.raises(Forbidden):
            await invitations.reject_invitation(inv_id, mallory)


class TestMyInvitations:
    @pytest.mark.asyncio
    async def test_lists_pending_for_my_email(self, store, project, owner, alice, invitations):
        await store.set("projects", "Q", {"name": "Zeus", "ownerId": owner.uid, "members": [owner.uid], "memberRoles": {owner.uid: "owner"}})
        first = await invitations.create_invitation(project, alice.email, "Member", owner)
        second = await invitations.create_invitation("Q", alice.email, "Viewer", owner)
        await invitations.create_invitation(project, "someone@x.com", "Member", owner)
        await store.update("invitations", first, {"createdAt": datetime(2024, 1, 1, tzinfo=timezone.utc)})
        await store.update("invitations", second, {"createdAt": datetime(2024, 2, 1, tzinfo=timezone.utc)})

        items = await invitations.list_my_invitations(alice)
        assert [i.id for i in items] == [second, first]
        assert items[0].project_name == "Zeus"
