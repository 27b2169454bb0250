# teamtrack/errors.py
from __future__ import annotations


class TeamTrackError(Exception):
    """Base error. `message` is safe to show to the end user."""

    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ===== Invitations / membership =====
class PermissionDenied(TeamTrackError):
    status_code = 403
    default_message = "You do not have permission to invite users to this project"


class Forbidden(TeamTrackError):
    status_code = 403
    default_message = "This invitation is not for you"


class AlreadyMember(TeamTrackError):
    status_code = 409
    default_message = "User is already a member of this project"


class DuplicateInvitation(TeamTrackError):
    status_code = 409
    default_message = "This user already has a pending invitation to this project"


class AlreadyProcessed(TeamTrackError):
    status_code = 409
    default_message = "This invitation has already been processed"


class NotFound(TeamTrackError):
    status_code = 404
    default_message = "Not found"


class InvalidRole(TeamTrackError):
    status_code = 400
    default_message = "Role must be one of: Admin, Member, Viewer"


class InvalidProfile(TeamTrackError):
    status_code = 400
    default_message = "First name and last name are required"


# ===== Record store =====
class AlreadyExists(TeamTrackError):
    status_code = 409
    default_message = "This record already exists"


class StoreUnavailable(TeamTrackError):
    status_code = 503
    default_message = "The data store is temporarily unavailable, please try again"


class StoreTimeout(StoreUnavailable):
    status_code = 504
    default_message = (
        "The data store did not answer in time. The change may or may not have been "
        "applied; refresh before trying again"
    )


class SubscriptionUnavailable(TeamTrackError):
    default_message = "Real-time updates are not available for this query"
