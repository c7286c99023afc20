"""Provider connection settings."""

from typing import Any

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderSettings(BaseSettings):
    """Connection settings handed to every provider at construction time.

    Fields can be set via constructor kwargs (YAML) or environment variables
    with the ``INFRA_`` prefix.  Constructor kwargs take precedence.

    Credentials are typically provided via ``INFRA_ACCESS_KEY`` /
    ``INFRA_SECRET_KEY`` rather than YAML to avoid committing secrets to
    version control.

    Examples:
        settings = ProviderSettings(backend="memory", region="eu-west-1")
    """

    model_config = SettingsConfigDict(env_prefix="INFRA_")

    backend: str = "memory"
    region: str | None = None
    profile: str | None = None
    access_key: SecretStr | None = None
    secret_key: SecretStr | None = None
    options: dict[str, Any] = Field(default_factory=dict)
