"""Route discovery: DNS TXT lookups on dnspython's async resolver."""

import logging
from typing import Awaitable, Callable, Optional

import dns.asyncresolver
import dns.exception
import dns.resolver

from .errors import LookupFailed, LookupTimedOut

logger = logging.getLogger(__name__)

# name -> TXT strings; an empty list means no record was published
TxtLookup = Callable[[str], Awaitable[list[str]]]


class DnsTxtLookup:
    """Resolve TXT records for a name.

    Multi-string TXT records are joined, as DNS splits long values into
    255-byte chunks.
    """

    def __init__(self, nameservers: Optional[list[str]] = None, timeout: float = 5.0):
        # explicit nameservers replace the system resolv.conf entirely
        self._resolver = dns.asyncresolver.Resolver(configure=not nameservers)
        if nameservers:
            self._resolver.nameservers = list(nameservers)
        self._resolver.lifetime = timeout

    async def __call__(self, name: str) -> list[str]:
        try:
            answer = await self._resolver.resolve(name, "TXT")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
        except dns.exception.Timeout as e:
            raise LookupTimedOut(f"DNS TXT lookup timed out for {name}: {e}")
        except dns.exception.DNSException as e:
            raise LookupFailed(f"DNS TXT lookup failed for {name}: {e}")
        records = [b"".join(rdata.strings).decode("utf-8", "replace") for rdata in answer]
        logger.debug(f"TXT {name}: {records}")
        return records
