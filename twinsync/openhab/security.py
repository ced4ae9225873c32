"""URL and item-name guards for user-supplied openHAB addresses.

Blocks requests to:
- Non-HTTP(S) schemes (file://, ftp://, etc.)
- Cloud metadata endpoints (169.254.169.254, metadata.google.internal, *.internal)
- Link-local addresses (169.254.x.x, fe80::/10)

Private networks and loopback are allowed unless the caller opts out,
since openHAB commonly runs on the LAN.
"""

import ipaddress
import re
from urllib.parse import urlparse

from twinsync.exceptions import InvalidItemNameError, ValidationError

ITEM_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_:-]+$")

_METADATA_HOSTS = frozenset({"metadata", "metadata.google.internal"})
_METADATA_IP = ipaddress.ip_address("169.254.169.254")
_LOOPBACK_HOSTS = frozenset({"localhost"})


def validate_item_name(item_name: str) -> str:
    """Return the name unchanged or raise InvalidItemNameError."""
    if not item_name or not ITEM_NAME_PATTERN.fullmatch(item_name):
        raise InvalidItemNameError(item_name)
    return item_name


def validate_external_url(url: str, *, allow_private_networks: bool = True) -> str:
    """Validate an openHAB base URL and return it without trailing slash.

    Raises:
        ValidationError: If the URL is malformed or targets a blocked host.
    """
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        raise ValidationError("Invalid URL format.", field="base_url") from None

    if parsed.scheme not in ("http", "https"):
        raise ValidationError("Only HTTP and HTTPS URLs are allowed.", field="base_url")

    try:
        hostname = parsed.hostname
        _ = parsed.port  # raises ValueError on a bad port
    except ValueError:
        raise ValidationError("Invalid URL format.", field="base_url") from None
    if not hostname:
        raise ValidationError("Invalid URL: missing hostname.", field="base_url")

    hostname = hostname.lower()
    if hostname in _METADATA_HOSTS or hostname.endswith(".internal"):
        raise ValidationError("Cloud metadata endpoints are not allowed.", field="base_url")

    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        ip = None

    if ip is not None:
        if ip == _METADATA_IP:
            raise ValidationError("URL points to a cloud metadata endpoint.", field="base_url")
        if ip.is_link_local:
            raise ValidationError("URL points to a link-local address.", field="base_url")
        if not allow_private_networks and (ip.is_private or ip.is_loopback):
            raise ValidationError("Private and loopback addresses are not allowed.", field="base_url")
    elif not allow_private_networks and hostname in _LOOPBACK_HOSTS:
        raise ValidationError("Localhost URLs are not allowed.", field="base_url")

    return url.strip().rstrip("/")
