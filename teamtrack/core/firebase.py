# teamtrack/core/firebase.py
from pathlib import Path
import json

import firebase_admin
from firebase_admin import credentials

from teamtrack.config import Settings


def _credentials(settings: Settings) -> credentials.Certificate:
    # 1) inline JSON from ENV (Render/production)
    if settings.FIREBASE_SERVICE_ACCOUNT_JSON:
        try:
            sa_info = json.loads(settings.FIREBASE_SERVICE_ACCOUNT_JSON)
        except json.JSONDecodeError as e:
            raise RuntimeError(
                "FIREBASE_SERVICE_ACCOUNT_JSON is not valid JSON"
            ) from e
        return credentials.Certificate(sa_info)

    # 2) fallback to a local file (dev)
    sa_path = Path(settings.GOOGLE_APPLICATION_CREDENTIALS)
    if not sa_path.exists():
        raise RuntimeError(
            f"Firebase service account JSON not found: {sa_path}. "
            f"Set FIREBASE_SERVICE_ACCOUNT_JSON or GOOGLE_APPLICATION_CREDENTIALS."
        )
    return credentials.Certificate(str(sa_path))


def init_firebase_app(settings: Settings) -> firebase_admin.App:
    """Initialise the default Firebase app once; later calls return it."""
    if firebase_admin._apps:
        return firebase_admin.get_app()

    options = {"projectId": settings.FIREBASE_PROJECT_ID} if settings.FIREBASE_PROJECT_ID else None
    return firebase_admin.initialize_app(_credentials(settings), options)


def delete_firebase_app() -> None:
    if firebase_admin._apps:
        firebase_admin.delete_app(firebase_admin.get_app())
