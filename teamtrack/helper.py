import hashlib
import random
import re
import string
import time
from typing import Optional

from teamtrack.errors import InvalidRole

PLACEHOLDER_PREFIX = "pending_"
DEFAULT_ROLE = "Member"
INVITE_ROLES = ("Admin", "Member", "Viewer")

_ID_ALPHABET = string.digits + string.ascii_lowercase
_DURATION_PART = re.compile(r"[0-9]+")


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def email_local_part(email: Optional[str]) -> str:
    """"a@x.com" -> "a". Used as display name until the user sets one."""
    return normalize_email(email).split("@", 1)[0]


def make_placeholder_id(now_ms: Optional[int] = None) -> str:
    """
    Synthetic user id for an invitee without an account:
    pending_<epoch millis>_<7 random chars>
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(random.choices(_ID_ALPHABET, k=7))
    return f"{PLACEHOLDER_PREFIX}{now_ms}_{suffix}"


def invitation_key(project_id: str, email: Optional[str]) -> str:
    """Doc id that is unique per (project, invitee email) while an invitation is pending."""
    digest = hashlib.sha1(normalize_email(email).encode("utf-8")).hexdigest()
    return f"{project_id}_{digest}"


def is_placeholder_id(user_id: Optional[str]) -> bool:
    return bool(user_id) and user_id.startswith(PLACEHOLDER_PREFIX)


def validate_invite_role(role: Optional[str]) -> str:
    # case-insensitive check, stored as given
    if not role:
        return DEFAULT_ROLE
    role = role.strip()
    if role.lower() not in {r.lower() for r in INVITE_ROLES}:
        raise InvalidRole()
    return role


def has_role(member_roles: Optional[dict], uid: str, role: str) -> bool:
    value = (member_roles or {}).get(uid)
    return isinstance(value, str) and value.lower() == role.lower()


def parse_duration(value) -> int:
    """
    "HH:MM:SS" -> total seconds.
    Raise ValueError kalau formatnya salah (segment count / bukan digit ASCII).
    Sign, underscore dan digit unicode ditolak, beda dengan int().
    """
    if not isinstance(value, str):
        raise ValueError(f"duration must be a string, got {type(value).__name__}")
    parts = value.strip().split(":")
    if len(parts) != 3:
        raise ValueError(f"duration must be HH:MM:SS, got {value!r}")
    if not all(_DURATION_PART.fullmatch(p) for p in parts):
        raise ValueError(f"duration has non-numeric parts: {value!r}")
    hours, minutes, seconds = (int(p) for p in parts)
    return hours * 3600 + minutes * 60 + seconds
