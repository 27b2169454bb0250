# teamtrack/services/membership_service.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from firebase_admin import firestore

from teamtrack.core.store import Document, RecordStore, WriteBatch
from teamtrack.errors import NotFound, StoreUnavailable
from teamtrack.helper import email_local_part, normalize_email

logger = logging.getLogger(__name__)


def _project_member_fields(user_id: str, role: str) -> Dict[str, Any]:
    return {
        "members": firestore.ArrayUnion([user_id]),
        f"memberRoles.{user_id}": role,
        "updatedAt": firestore.SERVER_TIMESTAMP,
    }


def _new_user_fields(
    user_id: str,
    project_id: str,
    email: Optional[str],
    display_name: Optional[str],
) -> Dict[str, Any]:
    return {
        "uid": user_id,
        "email": normalize_email(email),
        "displayName": display_name or email_local_part(email) or "User",
        "photoURL": None,
        "projects": firestore.ArrayUnion([project_id]),
        "createdAt": firestore.SERVER_TIMESTAMP,
        "updatedAt": firestore.SERVER_TIMESTAMP,
    }


class MembershipService:
    """Applies the side effects of joining a project.

    Every write is a set-union or a single map key, so replaying any step is
    harmless and concurrent joins to the same project do not clobber each other.
    """

    def __init__(self, store: RecordStore, retry_attempts: int = 3):
        self.store = store
        self.retry_attempts = max(1, retry_attempts)

    async def add_member(
        self,
        project_id: str,
        user_id: str,
        role: str,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> None:
        project = await self.store.get("projects", project_id)
        if project is None:
            raise NotFound("Project not found")

        # 1) project side; not rolled back if the user side fails
        await self.store.update("projects", project_id, _project_member_fields(user_id, role))
        logger.info("Added %s to project %s as %s", user_id, project_id, role)

        # 2) user side, retried with a fresh read each time
        last_error: Optional[StoreUnavailable] = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                await self._link_user(project_id, user_id, email, display_name)
                return
            except StoreUnavailable as e:
                last_error = e
                logger.warning(
                    "Linking project %s to user %s failed (attempt %d/%d): %s",
                    project_id, user_id, attempt, self.retry_attempts, e,
                )
        raise StoreUnavailable(
            "You were added to the project but it could not be linked to your account yet. "
            "Signing in again will finish the link."
        ) from last_error

    async def _link_user(
        self,
        project_id: str,
        user_id: str,
        email: Optional[str],
        display_name: Optional[str],
    ) -> None:
        user = await self.store.get("users", user_id)
        if user is None:
            await self.store.set("users", user_id, _new_user_fields(user_id, project_id, email, display_name), merge=True)
            logger.info("Created user document for %s", user_id)
            return
        if project_id in (user.get("projects") or []):
            return
        await self.store.update("users", user_id, {
            "projects": firestore.ArrayUnion([project_id]),
            "updatedAt": firestore.SERVER_TIMESTAMP,
        })

    def stage_member(
        self,
        batch: WriteBatch,
        project_id: str,
        user_id: str,
        role: str,
        user_doc: Optional[Document],
        email: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> None:
        """Same writes as ``add_member``, staged on a batch instead of applied."""
        batch.update("projects", project_id, _project_member_fields(user_id, role))
        if user_doc is None:
            batch.set("users", user_id, _new_user_fields(user_id, project_id, email, display_name), merge=True)
        else:
            batch.update("users", user_id, {
                "projects": firestore.ArrayUnion([project_id]),
                "updatedAt": firestore.SERVER_TIMESTAMP,
            })
