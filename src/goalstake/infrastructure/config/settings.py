"""Environment-based configuration management."""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Log level")
    format: str = Field("console", description="Log format: console or json")

    model_config = SettingsConfigDict(env_prefix="GOALSTAKE_LOG_")

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v.lower() not in {"console", "json"}:
            raise ValueError("Log format must be 'console' or 'json'")
        return v.lower()


class DatabaseConfig(BaseSettings):
    """State store configuration."""

    url: str = Field("memory://", description="memory:// or an SQLAlchemy database URL")
    echo: bool = Field(False, description="Echo SQL statements")

    model_config = SettingsConfigDict(env_prefix="GOALSTAKE_DB_")

    @property
    def is_memory(self) -> bool:
        return self.url == "memory://"


class AuthorityConfig(BaseSettings):
    """Initial holders of the deployment-wide authority records."""

    factory_admin: str = Field("factory-admin", min_length=1, description="Initial factory admin identity")
    distributor: str = Field("reward-distributor", min_length=1, description="Initial distributor identity")
    max_challenges: int = Field(1000, ge=1, description="Initial cap on challenges the factory may create")

    model_config = SettingsConfigDict(env_prefix="GOALSTAKE_AUTHORITY_")


class ChallengeRulesConfig(BaseSettings):
    """Field validation bounds.

    The factory and a challenge instance accept slightly different type and
    currency sets; both sets are kept here so deployments can align them.
    """

    factory_challenge_types: List[str] = Field(
        default=["fitness", "meditation", "reading", "sleep"],
        description="Challenge types accepted by the factory",
    )
    instance_challenge_types: List[str] = Field(
        default=["fitness", "meditation", "reading"],
        description="Challenge types accepted by initialize",
    )
    factory_currencies: List[str] = Field(default=["STX", "sBTC"], description="Currencies accepted by the factory")
    instance_currencies: List[str] = Field(default=["STX", "BTC"], description="Currencies accepted by initialize")

    max_participants: int = Field(100, ge=1, description="Upper bound for a challenge's participant cap")
    max_location_length: int = Field(100, ge=1)
    max_name_length: int = Field(100, ge=1)

    completion_reward: int = Field(100, ge=0, description="Flat reward paid per completer by the challenge claim")

    model_config = SettingsConfigDict(env_prefix="GOALSTAKE_RULES_")


class AppSettings(BaseSettings):
    """Application configuration settings."""

    title: str = Field("goalstake", description="Application title")
    version: str = Field("0.1.0", description="Application version")
    debug: bool = Field(False, description="Debug mode")

    # Sub-settings
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    authority: AuthorityConfig = Field(default_factory=AuthorityConfig)
    rules: ChallengeRulesConfig = Field(default_factory=ChallengeRulesConfig)

    model_config = SettingsConfigDict(env_prefix="GOALSTAKE_")


@lru_cache()
def get_settings() -> AppSettings:
    """Settings loaded once from the environment."""
    return AppSettings()
