from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
DEFAULT_SA_PATH = BASE_DIR / "serviceAccountKey.json"
load_dotenv(ENV_PATH)

class Settings(BaseSettings):
    APP_NAME: str = "TeamTrack API"
    ALLOWED_ORIGINS: str = "http://localhost:8081,http://127.0.0.1:8081"

    #FIREBASE
    FIREBASE_PROJECT_ID: str | None = None
    GOOGLE_APPLICATION_CREDENTIALS: str = str(DEFAULT_SA_PATH)
    FIREBASE_SERVICE_ACCOUNT_JSON: str | None = None

    #Record store
    STORE_BACKEND: Literal["firestore", "memory"] = "firestore"
    STORE_TIMEOUT_SECONDS: float = Field(10.0, gt=0)

    #Membership / invitations
    USE_BATCH_WRITES: bool = True
    MEMBERSHIP_RETRY_ATTEMPTS: int = Field(3, ge=1)
    TEAM_POLL_INTERVAL_SECONDS: float = Field(5.0, gt=0)

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()
