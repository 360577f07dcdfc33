"""
Vault Lifecycle — Wire the vault into an aiohttp application.

``setup_vault`` builds configuration and the cipher immediately, so a
missing or unsafe service secret stops the process before it serves
anything. The expiry scheduler is started on application startup and
stopped on cleanup. Every component is created once and reachable through
the application keys below.
"""
import logging
from typing import Optional

from aiohttp import web

from .cipher import CredentialCipher
from .config import VaultConfig
from .credentials import CredentialVault
from .expiry import ExpiryPolicyEngine
from .scheduler import ExpiryScheduler
from .store import CredentialStore

logger = logging.getLogger("navigator.keyvault")

VAULT_CONFIG = web.AppKey("keyvault_config", VaultConfig)
VAULT_CIPHER = web.AppKey("keyvault_cipher", CredentialCipher)
CREDENTIAL_VAULT = web.AppKey("keyvault_credentials", CredentialVault)
EXPIRY_ENGINE = web.AppKey("keyvault_expiry_engine", ExpiryPolicyEngine)
EXPIRY_SCHEDULER = web.AppKey("keyvault_expiry_scheduler", ExpiryScheduler)


def setup_vault(
    app: web.Application,
    store: CredentialStore,
    config: Optional[VaultConfig] = None,
    start_scheduler: bool = True,
) -> CredentialVault:
    """Register vault components on an aiohttp application.

    Args:
        app: Application to configure.
        store: Credential store shared by the vault and the expiry engine.
        config: Vault configuration; loaded from the environment if omitted.
        start_scheduler: Run the periodic expiry scan while the app runs.

    Returns:
        The CredentialVault registered on the application.

    Raises:
        ConfigurationError: If the service secret is not configured.
        pydantic.ValidationError: If the configuration is invalid.
    """
    config = config or VaultConfig.from_env()
    cipher = CredentialCipher.from_config(config)
    vault = CredentialVault(
        cipher, store,
        default_rotation_interval_days=config.default_rotation_interval_days,
    )
    engine = ExpiryPolicyEngine(
        store, max_concurrency=config.expiry_max_concurrency,
    )
    scheduler = ExpiryScheduler(engine, interval=config.expiry_check_interval)

    app[VAULT_CONFIG] = config
    app[VAULT_CIPHER] = cipher
    app[CREDENTIAL_VAULT] = vault
    app[EXPIRY_ENGINE] = engine
    app[EXPIRY_SCHEDULER] = scheduler

    if start_scheduler:
        app.cleanup_ctx.append(_expiry_scheduler_ctx)

    logger.info("Credential vault configured (environment=%s)", config.environment)
    return vault


async def _expiry_scheduler_ctx(app: web.Application):
    scheduler = app[EXPIRY_SCHEDULER]
    await scheduler.start()
    yield
    await scheduler.stop()
