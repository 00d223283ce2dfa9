"""EMSG address parsing: `local-part#domain`."""

from typing import NamedTuple
from urllib.parse import quote, unquote

from .errors import InvalidFormat

SEPARATOR = "#"


class Address(NamedTuple):
    local: str
    domain: str

    def __str__(self) -> str:
        return f"{self.local}{SEPARATOR}{self.domain}"


def validate_address(address: str) -> Address:
    """Parse an address, raising InvalidFormat if it is not `local#domain.tld`.

    No case-folding or length limits are applied.
    """
    if not isinstance(address, str):
        raise InvalidFormat(f"address must be a string, got {type(address).__name__}")
    parts = address.split(SEPARATOR)
    if len(parts) != 2:
        raise InvalidFormat(f"invalid address format: {address!r}")
    local, domain = parts
    if not local:
        raise InvalidFormat(f"missing local part: {address!r}")
    if not domain:
        raise InvalidFormat(f"missing domain: {address!r}")
    if "." not in domain:
        raise InvalidFormat(f"domain must contain a dot: {address!r}")
    return Address(local, domain)


def is_valid_address(address: str) -> bool:
    try:
        validate_address(address)
    except InvalidFormat:
        return False
    return True


def quote_address(address: str) -> str:
    """Encode an address for a URL query parameter (`#` becomes `%23`)."""
    return quote(address, safe="")


def unquote_address(value: str) -> str:
    return unquote(value)
