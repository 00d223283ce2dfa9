"""DNS-based routing: address -> serving endpoint.

A domain publishes its EMSG server in a TXT record at `_emsg.<domain>`,
either as JSON:

    {"server": "https://emsg.example.com", "pubkey": "...", "version": "1.0", "ttl": 3600}

or as a bare URL:

    https://emsg.example.com
"""

import asyncio
import json
import logging
from typing import Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from .address import validate_address
from .discovery import TxtLookup
from .errors import (
    EmsgError,
    LookupFailed,
    LookupTimedOut,
    NoRecord,
    RoutingFailed,
    UnparsableRecord,
)
from .models import BareURLRoute, RouteInfo, StructuredRoute

logger = logging.getLogger(__name__)

DISCOVERY_PREFIX = "_emsg."
BARE_URL_VERSION = "1.0"
BARE_URL_TTL = 3600


def discovery_name(domain: str) -> str:
    return f"{DISCOVERY_PREFIX}{domain}"


def is_local_domain(domain: str, local_domains: Iterable[str]) -> bool:
    return domain in set(local_domains)


def parse_route_info(text: str) -> RouteInfo:
    """Decode a TXT value into a StructuredRoute or a BareURLRoute."""
    value = text.strip()
    if value.startswith("{"):
        try:
            data = json.loads(value)
        except json.JSONDecodeError as e:
            raise UnparsableRecord(f"invalid JSON route record: {e}")
        if not isinstance(data, dict) or not data.get("server"):
            raise UnparsableRecord("JSON route record has no server")
        try:
            return StructuredRoute(
                server=data["server"],
                pubkey=data.get("pubkey", ""),
                version=str(data.get("version", "")),
                ttl=data.get("ttl", 0),
            )
        except PydanticValidationError as e:
            raise UnparsableRecord(f"invalid route record fields: {e.error_count()} errors")
    if value.startswith("http://") or value.startswith("https://"):
        return BareURLRoute(server=value, version=BARE_URL_VERSION, ttl=BARE_URL_TTL)
    raise UnparsableRecord(f"unrecognized route record: {text!r}")


class RoutingResolver:
    """Resolves EMSG addresses to server endpoints through DNS."""

    def __init__(self, lookup_txt: TxtLookup, timeout: float = 5.0,
                 local_domains: Iterable[str] = (), local_server: str = ""):
        self.lookup_txt = lookup_txt
        self.timeout = timeout
        self.local_domains = set(local_domains)
        self.local_server = local_server.rstrip("/")

    async def _query(self, name: str) -> list[str]:
        try:
            return await asyncio.wait_for(self.lookup_txt(name), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise LookupTimedOut(f"DNS TXT lookup for {name} exceeded {self.timeout}s")
        except EmsgError:
            raise
        except OSError as e:
            raise LookupFailed(f"DNS TXT lookup failed for {name}: {e}")

    async def lookup_route(self, address: str) -> str:
        """Return the first TXT value published for the address's domain."""
        parsed = validate_address(address)
        name = discovery_name(parsed.domain)
        records = await self._query(name)
        if not records:
            raise NoRecord(f"no TXT records found for {name}")
        if len(records) > 1:
            logger.debug(f"{name} publishes {len(records)} TXT records, using the first")
        return records[0]

    async def get_route_info(self, address: str) -> RouteInfo:
        return parse_route_info(await self.lookup_route(address))

    async def resolve_server(self, address: str) -> str:
        """Server endpoint for one address, short-circuiting local domains."""
        parsed = validate_address(address)
        if self.local_server and is_local_domain(parsed.domain, self.local_domains):
            return self.local_server
        route = await self.get_route_info(address)
        return route.server

    async def route_message(self, recipients: list[str]) -> dict[str, list[str]]:
        """Group recipients by the server that handles them.

        Every address is validated before any lookup is issued; the first
        failure aborts the whole call.
        """
        for recipient in recipients:
            try:
                validate_address(recipient)
            except EmsgError as e:
                raise RoutingFailed(f"invalid recipient {recipient!r}: {e.detail}", cause=e)

        routes: dict[str, list[str]] = {}
        for recipient in recipients:
            try:
                server = await self.resolve_server(recipient)
            except EmsgError as e:
                logger.warning(f"Routing failed for {recipient}: {e.kind}: {e.detail}")
                raise RoutingFailed(f"no route for {recipient}: {e.detail}", cause=e)
            routes.setdefault(server, []).append(recipient)
        return routes

    def is_local(self, address: str) -> bool:
        return is_local_domain(validate_address(address).domain, self.local_domains)


def build_resolver(config, lookup_txt: Optional[TxtLookup] = None) -> RoutingResolver:
    """Wire a resolver from daemon config, using dnspython unless a lookup is given."""
    if lookup_txt is None:
        from .discovery import DnsTxtLookup
        lookup_txt = DnsTxtLookup(nameservers=config.dns_nameservers, timeout=config.dns_timeout)
    return RoutingResolver(
        lookup_txt,
        timeout=config.dns_timeout,
        local_domains=config.served_domains,
        local_server=config.server_url,
    )
