"""
Configuration management for the collaboration machine.
"""

from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="COLLAB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Collab Machine")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)

    # Logging
    log_level: str = Field(default="INFO")

    # Machine identity
    machine_id: str = Field(
        default="collab-machine",
        description="Identifier mixed into every canonical signing message",
    )
    maintainer: str = Field(
        default="",
        description="Identity (hex public key) allowed to accept and reject patches",
    )

    # Runtime upgrades
    allow_runtime_upgrades: bool = Field(default=True)
    upgrade_operators: str = Field(
        default="",
        description="Comma-separated identities allowed to run 'update'. Empty = maintainer only.",
    )

    # Authoring policy
    close_issue_policy: Literal["author_or_maintainer", "open"] = Field(
        default="author_or_maintainer",
        description="'open' deletes issues for any caller",
    )

    # Git collaborator
    git_repo_path: Optional[str] = Field(default=None)
    git_mainline: str = Field(default="main")
    git_remote: str = Field(default="origin")


def parse_identity_list(raw: str) -> List[str]:
    """
    Parse a comma-separated identity list.

    Examples:
        "abc,def" -> ["abc", "def"]
        "  abc , def  " -> ["abc", "def"]
        "" -> []
    """
    if not raw or not raw.strip():
        return []

    items = [item.strip() for item in raw.split(",")]
    return [item for item in items if item]


def resolve_upgrade_operators(settings: Settings) -> List[str]:
    """Identities permitted to pass the upgrade gate."""
    operators = parse_identity_list(settings.upgrade_operators)
    if operators:
        return operators
    return [settings.maintainer] if settings.maintainer else []


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
