"""Shared fixtures.

Services run against the in-memory record store, so no Firebase project or
credentials are needed.
"""

import os

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest

from teamtrack.core.memory_store import MemoryStore
from teamtrack.models.user import Principal
from teamtrack.services.invitation_service import InvitationService
from teamtrack.services.membership_service import MembershipService
from teamtrack.services.project_service import ProjectService
from teamtrack.services.team_service import TeamService
from teamtrack.services.user_service import UserService

PROJECT_ID = "P"


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def owner():
    return Principal(uid="u1", email="owner@x.com", display_name="Olive Owner")


@pytest.fixture
def alice():
    """Invitee; has no user document until a test creates one."""
    return Principal(uid="alice-uid", email="a@x.com", display_name="Alice")


@pytest.fixture
def mallory():
    return Principal(uid="mallory-uid", email="m@x.com", display_name="Mallory")


@pytest.fixture
async def project(store, owner):
    """Project P owned by u1, with the owner's user document."""
    await store.set("users", owner.uid, {
        "uid": owner.uid,
        "email": owner.email,
        "displayName": owner.display_name,
        "projects": [PROJECT_ID],
    })
    await store.set("projects", PROJECT_ID, {
        "name": "Apollo",
        "description": "",
        "ownerId": owner.uid,
        "members": [owner.uid],
        "memberRoles": {owner.uid: "owner"},
        "pendingInvitations": [],
    })
    return PROJECT_ID


@pytest.fixture
def membership(store):
    return MembershipService(store, retry_attempts=3)


@pytest.fixture
def invitations(store, membership):
    return InvitationService(store, membership)


@pytest.fixture
def sequential_invitations(store, membership):
    return InvitationService(store, membership, use_batch=False)


@pytest.fixture
def team(store):
    return TeamService(store, poll_interval=0.01)


@pytest.fixture
def users(store, membership):
    return UserService(store, membership)


@pytest.fixture
def projects(store, membership):
    return ProjectService(store, membership)
