"""
Runtime configuration read from environment variables.

A ``.env`` file in the working directory is loaded first when present;
explicit environment variables win over it.
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field


def _env(key: str) -> str | None:
    v = os.getenv(key)
    return v.strip() if isinstance(v, str) and v.strip() else None


class IntakeSettings(BaseModel):
    """
    Settings for the extraction API, the database and the acting user.

    Attributes:
        api_url: Base URL of the extraction service (INTAKE_API_URL)
        api_timeout: Extraction request timeout in seconds (INTAKE_API_TIMEOUT)
        db_host / db_port / db_name / db_user / db_password: PostgreSQL (DB_*)
        user_id: Authenticated principal supplied by the identity provider (INTAKE_USER_ID)
        field_rules_path: Optional YAML overriding the built-in field rules (INTAKE_FIELD_RULES)
        log_level: LOG_LEVEL
        log_format: "json" or "text" (LOG_FORMAT)
    """

    api_url: str = "http://localhost:8000"
    api_timeout: float = Field(default=120.0, gt=0)
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "shipments"
    db_user: str = "intake"
    db_password: str | None = None
    user_id: str | None = None
    field_rules_path: Path | None = None
    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "IntakeSettings":
        """
        Build settings from the environment.

        Args:
            env_file: Optional dotenv file (defaults to ./.env when it exists)
        """
        if env_file is not None:
            load_dotenv(env_file, override=False)
        elif Path(".env").exists():
            load_dotenv(".env", override=False)

        values = {
            "api_url": _env("INTAKE_API_URL"),
            "api_timeout": _env("INTAKE_API_TIMEOUT"),
            "db_host": _env("DB_HOST"),
            "db_port": _env("DB_PORT"),
            "db_name": _env("DB_NAME"),
            "db_user": _env("DB_USER"),
            "db_password": _env("DB_PASSWORD"),
            "user_id": _env("INTAKE_USER_ID"),
            "field_rules_path": _env("INTAKE_FIELD_RULES"),
            "log_level": _env("LOG_LEVEL"),
            "log_format": _env("LOG_FORMAT"),
        }
        return cls(**{k: v for k, v in values.items() if v is not None})
