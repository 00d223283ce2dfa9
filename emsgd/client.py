"""EMSG client SDK: signed calls against an EMSG daemon.

Usage:
    from emsgd.client import EmsgClient
    from emsgd.crypto import KeyPair

    key = KeyPair.generate()
    client = EmsgClient("https://emsg.example.com", "alice#example.com", key)
    await client.register(first_name="Alice")

    # Or find alice's home server through DNS (_emsg.example.com TXT)
    client = await EmsgClient.discover("alice#example.com", key, resolver)

    await client.send(to=["bob#example.org"], body="hello")
    for msg in await client.messages():
        print(msg["from"], msg["body"])
"""

from typing import Optional
from urllib.parse import quote, unquote, urlparse

import httpx

from .address import quote_address, validate_address
from .auth import create_auth_request
from .crypto import KeyPair
from .router import RoutingResolver


class EmsgClient:
    """Client for one identity talking to its home EMSG daemon."""

    def __init__(self, base_url: str, address: str = "", keypair: Optional[KeyPair] = None,
                 timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            base_url: URL of the daemon serving this identity
            address: the caller's EMSG address (needed for signed calls)
            keypair: the Ed25519 key registered for `address`
            timeout: request timeout in seconds
            transport: optional httpx transport (e.g. an ASGI app in tests)
        """
        if address:
            validate_address(address)
        self.base_url = base_url.rstrip("/")
        self.address = address
        self.keypair = keypair
        self.timeout = timeout
        self._transport = transport
        self._prefix = urlparse(self.base_url).path

    @classmethod
    async def discover(cls, address: str, keypair: KeyPair, resolver: RoutingResolver,
                       **kwargs) -> "EmsgClient":
        """Connect to the server published in DNS for `address`'s domain."""
        route = await resolver.get_route_info(address)
        return cls(route.server, address, keypair, **kwargs)

    def _headers(self, method: str, path: str) -> dict:
        if not (self.address and self.keypair):
            raise ValueError("signed calls need an address and a key pair")
        # The daemon verifies against the decoded request path.
        signed_path = unquote(self._prefix + path)
        return {"Authorization": create_auth_request(self.address, self.keypair, method, signed_path)}

    async def _request(self, method: str, path: str, params: dict = None, json: dict = None,
                       signed: bool = True):
        headers = self._headers(method, path) if signed else None
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as c:
            resp = await c.request(method, f"{self.base_url}{path}", params=params,
                                   json=json, headers=headers)
            resp.raise_for_status()
            return resp.json()

    # --- Identity ---

    async def node(self) -> dict:
        """The daemon's own identity; echoes this client if signatures check out."""
        signed = bool(self.address and self.keypair)
        return await self._request("GET", "/api/identity", signed=signed)

    async def register(self, first_name: str = "", middle_name: str = "", last_name: str = "",
                       display_picture: str = "") -> dict:
        return await self._request("POST", "/api/user", json={
            "address": self.address,
            "pubkey": self.keypair.pubkey_b64,
            "first_name": first_name,
            "middle_name": middle_name,
            "last_name": last_name,
            "display_picture": display_picture,
        }, signed=False)

    async def get_user(self, address: str) -> dict:
        return await self._request("GET", "/api/user", params={"address": address}, signed=False)

    # --- Messages ---

    async def send(self, to: list[str], body: str, cc: list[str] = None, group_id: str = "",
                   signature: str = "") -> dict:
        return await self._request("POST", "/api/message", json={
            "from": self.address,
            "to": to,
            "cc": cc or [],
            "group_id": group_id,
            "body": body,
            "signature": signature,
        })

    async def messages(self, limit: int = 100) -> list[dict]:
        return await self._request("GET", "/api/messages", params={"limit": limit})

    # --- Groups ---

    async def create_group(self, group_id: str, name: str, description: str = "",
                           display_picture: str = "", members: list[str] = None) -> dict:
        return await self._request("POST", "/api/group", json={
            "id": group_id,
            "name": name,
            "description": description,
            "display_picture": display_picture,
            "members": members or [],
        })

    async def get_group(self, group_id: str) -> dict:
        return await self._request("GET", "/api/group", params={"id": group_id}, signed=False)

    def _group_path(self, group_id: str, *parts: str) -> str:
        return "/".join(["/api/group", quote(group_id, safe=""), *parts])

    async def update_group(self, group_id: str, name: str = None, description: str = None,
                           display_picture: str = None) -> dict:
        changes = {"name": name, "description": description, "display_picture": display_picture}
        return await self._request("PATCH", self._group_path(group_id),
                                   json={k: v for k, v in changes.items() if v is not None})

    async def add_member(self, group_id: str, address: str) -> dict:
        return await self._request("POST", self._group_path(group_id, "members"),
                                   json={"address": address})

    async def remove_member(self, group_id: str, address: str) -> dict:
        return await self._request("DELETE", self._group_path(group_id, "members", quote_address(address)))

    async def leave_group(self, group_id: str) -> dict:
        return await self.remove_member(group_id, self.address)

    async def add_admin(self, group_id: str, address: str) -> dict:
        return await self._request("POST", self._group_path(group_id, "admins"),
                                   json={"address": address})

    async def remove_admin(self, group_id: str, address: str) -> dict:
        return await self._request("DELETE", self._group_path(group_id, "admins", quote_address(address)))

    async def group_events(self, group_id: str) -> list[dict]:
        return await self._request("GET", self._group_path(group_id, "events"))

    # --- Routing ---

    async def route(self, address: str) -> dict:
        return await self._request("GET", "/api/route", params={"address": address}, signed=False)

    async def route_message(self, recipients: list[str]) -> dict:
        return await self._request("POST", "/api/route/message",
                                   json={"recipients": recipients}, signed=False)
