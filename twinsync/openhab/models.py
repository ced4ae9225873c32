"""openHAB wire models and credential types."""

import base64
import math
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from twinsync.exceptions import ConnectionErrorKind

SENTINEL_STATES = frozenset({"NULL", "UNDEF"})
NUMERIC_TYPE_PREFIX = "Number"


# ─── Credentials ─────────────────────────────────────────────────────────────


class NoCredential(BaseModel):
    """Anonymous access."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["none"] = "none"

    def auth_header(self) -> str | None:
        return None


class BasicCredential(BaseModel):
    """Username/password, e.g. myopenHAB cloud (email:password)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["basic"] = "basic"
    username: str
    password: SecretStr

    def auth_header(self) -> str | None:
        raw = f"{self.username}:{self.password.get_secret_value()}"
        return f"Basic {base64.b64encode(raw.encode()).decode()}"


class BearerCredential(BaseModel):
    """openHAB API token."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["bearer"] = "bearer"
    token: SecretStr

    def auth_header(self) -> str | None:
        return f"Bearer {self.token.get_secret_value()}"


Credential = NoCredential | BasicCredential | BearerCredential


def parse_credential(raw: str | None) -> Credential:
    """Decide the auth scheme for a stored credential string.

    A colon means ``user:password`` Basic auth (split on the first colon,
    so passwords may contain colons). Any other non-empty string is a
    Bearer token.
    """
    if not raw:
        return NoCredential()
    if ":" in raw:
        username, password = raw.split(":", 1)
        return BasicCredential(username=username, password=SecretStr(password))
    return BearerCredential(token=SecretStr(raw))


def credential_to_raw(credential: Credential) -> str | None:
    """Inverse of parse_credential, used before encrypting for storage."""
    if isinstance(credential, BasicCredential):
        return f"{credential.username}:{credential.password.get_secret_value()}"
    if isinstance(credential, BearerCredential):
        return credential.token.get_secret_value()
    return None


# ─── Items ───────────────────────────────────────────────────────────────────


class ExternalItem(BaseModel):
    """An item as returned by ``GET /rest/items``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    declared_type: str = Field(alias="type")
    label: str | None = None
    state: str | None = None
    category: str | None = None

    @property
    def is_numeric(self) -> bool:
        return self.declared_type.startswith(NUMERIC_TYPE_PREFIX)

    @property
    def has_value(self) -> bool:
        return not is_sentinel_state(self.state)

    @property
    def display_name(self) -> str:
        return self.label or self.name


def is_sentinel_state(state: str | None) -> bool:
    """True for states that mean "no value" (NULL, UNDEF or missing)."""
    return state is None or state in SENTINEL_STATES


def parse_numeric_state(state: str | None) -> float | None:
    """Parse the leading number of an item state.

    Quantity states carry a unit after whitespace ("23.5 °C"); only the
    first token is read. Sentinels, non-numeric text and non-finite
    values yield None.
    """
    if is_sentinel_state(state):
        return None
    tokens = state.split()
    if not tokens:
        return None
    try:
        value = float(tokens[0])
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


class ConnectionTestResult(BaseModel):
    """Outcome of a reachability check against an openHAB server."""

    success: bool
    message: str
    item_count: int | None = None
    error_kind: ConnectionErrorKind | None = None
