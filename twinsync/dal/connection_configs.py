"""Connection configuration store.

One openHAB connection per owner. Input is validated and clamped before
anything is written, and the credential is stored Fernet-encrypted with
a key derived from ``Settings.credential_secret``.
"""

import base64
import hashlib
import logging
from datetime import datetime
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel, field_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from twinsync.exceptions import (
    ConfigurationError,
    NotFoundError,
    ValidationError,
)
from twinsync.openhab.models import Credential, parse_credential
from twinsync.openhab.security import validate_external_url
from twinsync.settings import Settings, get_settings
from twinsync.storage.entities import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    MAX_POLL_INTERVAL_SECONDS,
    MIN_POLL_INTERVAL_SECONDS,
    ConnectionConfig,
)

logger = logging.getLogger(__name__)

_DEV_SECRET = "twinsync-development-credential-secret"


def _derive_fernet_key(secret: str) -> bytes:
    """SHA-256 the secret into the 32 url-safe base64 bytes Fernet wants."""
    digest = hashlib.sha256(secret.encode()).digest()
    return base64.urlsafe_b64encode(digest)


def encrypt_credential(raw: str, secret: str) -> str:
    return Fernet(_derive_fernet_key(secret)).encrypt(raw.encode()).decode()


def decrypt_credential(encrypted: str, secret: str) -> str:
    """Decrypt a stored credential.

    Raises:
        cryptography.fernet.InvalidToken: If the secret does not match.
    """
    return Fernet(_derive_fernet_key(secret)).decrypt(encrypted.encode()).decode()


def get_credential_secret(settings: Settings | None = None) -> str:
    """Secret for credential encryption.

    Production requires an explicit CREDENTIAL_SECRET; other environments
    fall back to a fixed development secret.
    """
    settings = settings or get_settings()
    configured = settings.credential_secret.get_secret_value()
    if configured:
        return configured
    if settings.environment == "production":
        raise ConfigurationError(
            "CREDENTIAL_SECRET must be set in production. Generate one with: openssl rand -hex 32"
        )
    logger.warning("CREDENTIAL_SECRET is not set; using the development secret")
    return _DEV_SECRET


def clamp_poll_interval(seconds: int) -> int:
    return max(MIN_POLL_INTERVAL_SECONDS, min(MAX_POLL_INTERVAL_SECONDS, seconds))


class ConnectionConfigInput(BaseModel):
    """Validated input for saving a connection.

    Fields not supplied on an update keep their stored value.
    """

    base_url: str
    credential: str | None = None
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    enabled: bool = True
    clear_credential: bool = False

    @field_validator("base_url")
    @classmethod
    def _check_base_url(cls, value: str) -> str:
        try:
            return validate_external_url(
                value,
                allow_private_networks=get_settings().openhab_allow_private_networks,
            )
        except ValidationError as e:
            raise ValueError(str(e)) from e

    @field_validator("poll_interval_seconds", mode="before")
    @classmethod
    def _check_poll_interval(cls, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError("poll_interval_seconds must be an integer number of seconds")
        return clamp_poll_interval(value)

    @field_validator("credential")
    @classmethod
    def _blank_credential_is_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value


def parse_config_input(data: ConnectionConfigInput | dict[str, Any]) -> ConnectionConfigInput:
    """Validate raw input, translating pydantic errors into ValidationError."""
    if isinstance(data, ConnectionConfigInput):
        return data
    try:
        return ConnectionConfigInput.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        message = first.get("msg", "Invalid connection settings").removeprefix("Value error, ")
        raise ValidationError(f"{field}: {message}" if field else message, field=field) from e


class ConnectionConfigStore:
    """Per-owner connection records with upsert semantics."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    async def get(self, owner_id: str) -> ConnectionConfig | None:
        result = await self.session.execute(
            select(ConnectionConfig).where(ConnectionConfig.owner_id == owner_id)
        )
        return result.scalar_one_or_none()

    async def load(self, owner_id: str) -> ConnectionConfig:
        """Get the owner's connection.

        Raises:
            NotFoundError: If the owner has not configured openHAB.
        """
        config = await self.get(owner_id)
        if config is None:
            raise NotFoundError(f"No openHAB connection configured for owner {owner_id}")
        return config

    async def get_by_id(self, config_id: str) -> ConnectionConfig | None:
        result = await self.session.execute(
            select(ConnectionConfig).where(ConnectionConfig.id == config_id)
        )
        return result.scalar_one_or_none()

    async def list_enabled(self) -> list[ConnectionConfig]:
        result = await self.session.execute(
            select(ConnectionConfig)
            .where(ConnectionConfig.enabled.is_(True))
            .order_by(ConnectionConfig.owner_id)
        )
        return list(result.scalars().all())

    async def save(
        self,
        owner_id: str,
        data: ConnectionConfigInput | dict[str, Any],
    ) -> ConnectionConfig:
        """Validate, then insert or update the owner's connection.

        The stored credential survives an update that supplies none,
        unless clear_credential is set.

        Raises:
            ValidationError: On invalid input; nothing is written.
        """
        config_input = parse_config_input(data)
        provided = config_input.model_fields_set

        encrypted: str | None = None
        if config_input.credential is not None:
            encrypted = encrypt_credential(
                config_input.credential, get_credential_secret(self.settings)
            )

        existing = await self.get(owner_id)
        if existing is None:
            config = ConnectionConfig(
                owner_id=owner_id,
                base_url=config_input.base_url,
                credential_encrypted=encrypted,
                poll_interval_seconds=config_input.poll_interval_seconds,
                enabled=config_input.enabled,
                last_sync_at=None,
            )
            self.session.add(config)
            await self.session.flush()
            logger.info("Created openHAB connection for owner %s (%s)", owner_id, config.base_url)
            return config

        existing.base_url = config_input.base_url
        if "poll_interval_seconds" in provided:
            existing.poll_interval_seconds = config_input.poll_interval_seconds
        if "enabled" in provided:
            existing.enabled = config_input.enabled
        if encrypted is not None:
            existing.credential_encrypted = encrypted
        elif config_input.clear_credential:
            existing.credential_encrypted = None

        await self.session.flush()
        logger.info("Updated openHAB connection for owner %s (%s)", owner_id, existing.base_url)
        return existing

    async def mark_synced(self, owner_id: str, timestamp: datetime) -> None:
        """Set last_sync_at; no other field changes."""
        config = await self.load(owner_id)
        config.last_sync_at = timestamp
        await self.session.flush()

    def credential_for(self, config: ConnectionConfig) -> Credential:
        """Decrypt and classify the stored credential.

        Raises:
            ConfigurationError: If the credential cannot be decrypted
                with the current secret.
        """
        if not config.credential_encrypted:
            return parse_credential(None)
        try:
            raw = decrypt_credential(
                config.credential_encrypted, get_credential_secret(self.settings)
            )
        except InvalidToken as e:
            raise ConfigurationError(
                "Stored openHAB credential cannot be decrypted; was CREDENTIAL_SECRET changed?"
            ) from e
        return parse_credential(raw)


__all__ = [
    "ConnectionConfigInput",
    "ConnectionConfigStore",
    "clamp_poll_interval",
    "decrypt_credential",
    "encrypt_credential",
    "get_credential_secret",
    "parse_config_input",
]
