"""
Vault Configuration — Service secret loading and validated settings.

Reads settings from environment variables:
    KEYVAULT_SERVICE_SECRET = <random string, at least 32 characters>
    KEYVAULT_ENV = development | staging | production | testing
    KEYVAULT_EXPIRY_INTERVAL = <seconds between expiry scans>
    KEYVAULT_EXPIRY_CONCURRENCY = <records evaluated in parallel>

There is no default service secret. A missing secret always fails at
startup; a weak or published secret fails in production and only warns
elsewhere.

Security Note:
    Never log the service secret. Only log its length when rejecting it.
"""
import os
import secrets
import logging

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from .exceptions import ConfigurationError

logger = logging.getLogger("navigator.keyvault")

SERVICE_SECRET_ENV = "KEYVAULT_SERVICE_SECRET"
MIN_SECRET_LENGTH = 32

# Defaults that shipped in earlier releases and sample configs.
_KNOWN_DEFAULT_SECRETS = frozenset({
    "myAESSecretKey123456789012345678901234567890",
    "changeme",
    "secret",
})

_DEPLOY_ENVIRONMENTS = ("development", "staging", "production", "testing")


def load_service_secret() -> str:
    """Read the service-wide secret from KEYVAULT_SERVICE_SECRET.

    Returns:
        The raw secret string.

    Raises:
        ConfigurationError: If the variable is missing or empty.
    """
    value = os.environ.get(SERVICE_SECRET_ENV)
    if not value:
        raise ConfigurationError(
            f"{SERVICE_SECRET_ENV} environment variable is not set. "
            f"Generate one with generate_service_secret()"
        )
    return value


def is_weak_secret(secret: str) -> bool:
    """Return True for short secrets or secrets published as defaults."""
    return len(secret) < MIN_SECRET_LENGTH or secret in _KNOWN_DEFAULT_SECRETS


def generate_service_secret() -> str:
    """Generate a random service secret (64 hex characters).

    This is a utility for operators provisioning a new deployment.
    """
    return secrets.token_hex(32)


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    service_secret: SecretStr
    environment: str = Field(default="development")
    expiry_check_interval: int = Field(default=86400, ge=60)
    expiry_max_concurrency: int = Field(default=10, ge=1, le=100)
    default_rotation_interval_days: int = Field(default=90, ge=1, le=365)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate the deployment environment name."""
        v = v.lower()
        if v not in _DEPLOY_ENVIRONMENTS:
            raise ValueError(f"Unsupported environment: {v}")
        return v

    @field_validator("service_secret")
    @classmethod
    def validate_secret_present(cls, v: SecretStr) -> SecretStr:
        """Reject an empty service secret."""
        if not v.get_secret_value():
            raise ValueError("service_secret cannot be empty")
        return v

    @model_validator(mode="after")
    def validate_secret_strength(self) -> "VaultConfig":
        """Fail closed on weak secrets in production, warn elsewhere."""
        secret = self.service_secret.get_secret_value()
        if is_weak_secret(secret):
            if self.is_production:
                raise ValueError(
                    "service_secret is too weak for production "
                    f"(minimum {MIN_SECRET_LENGTH} characters, "
                    "published defaults are rejected)"
                )
            logger.warning(
                "Weak service secret in %s environment (length=%d)",
                self.environment, len(secret),
            )
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.

        Raises:
            ConfigurationError: If the service secret is not configured.
        """
        service_secret = load_service_secret()
        return cls(
            service_secret=service_secret,
            environment=os.environ.get("KEYVAULT_ENV", "development"),
            expiry_check_interval=int(
                os.environ.get("KEYVAULT_EXPIRY_INTERVAL", 86400)
            ),
            expiry_max_concurrency=int(
                os.environ.get("KEYVAULT_EXPIRY_CONCURRENCY", 10)
            ),
        )
