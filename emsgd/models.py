"""Identity, group, event, message and route models."""

import time
import uuid
from base64 import b64decode
from binascii import Error as BinasciiError
from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .address import validate_address
from .errors import InvalidPublicKey

PUBLIC_KEY_SIZE = 32  # Ed25519


def new_msg_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def decode_public_key(pubkey_b64: str) -> bytes:
    """Decode a base64 Ed25519 public key, checking its size."""
    try:
        raw = b64decode(pubkey_b64, validate=True)
    except (BinasciiError, ValueError):
        raise InvalidPublicKey("public key is not valid base64")
    if len(raw) != PUBLIC_KEY_SIZE:
        raise InvalidPublicKey(f"invalid public key size: {len(raw)} bytes")
    return raw


class Identity(BaseModel):
    address: str
    pubkey: str  # base64 Ed25519 verify key
    first_name: str = ""
    middle_name: str = ""
    last_name: str = ""
    display_picture: str = ""

    @property
    def pubkey_bytes(self) -> bytes:
        return decode_public_key(self.pubkey)


class SignedEnvelope(BaseModel):
    address: str
    timestamp: int  # unix seconds
    nonce: str
    signature: str  # base64


class Group(BaseModel):
    id: str
    name: str
    description: str = ""
    display_picture: str = ""
    members: list[str] = []
    admins: list[str] = []

    def is_member(self, address: str) -> bool:
        return address in self.members

    def is_admin(self, address: str) -> bool:
        return address in self.admins


class SystemEvent(BaseModel):
    kind: str
    group_id: str
    subject: str = ""
    timestamp: float = Field(default_factory=time.time)
    seq: Optional[int] = None


class Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    msg_id: str = Field(default_factory=new_msg_id)
    from_addr: str = Field(default="", alias="from")
    to: list[str] = []
    cc: list[str] = []
    group_id: str = ""
    body: str = ""
    signature: str = ""
    sent_at: str = Field(default_factory=now_iso)


# --- Route records ---


class StructuredRoute(BaseModel):
    kind: Literal["structured"] = "structured"
    server: str
    pubkey: str = ""
    version: str = ""
    ttl: int = 0


class BareURLRoute(BaseModel):
    kind: Literal["bare_url"] = "bare_url"
    server: str
    pubkey: str = ""
    version: str = "1.0"
    ttl: int = 3600


RouteInfo = Annotated[Union[StructuredRoute, BareURLRoute], Field(discriminator="kind")]


# --- API requests ---


class RegisterRequest(BaseModel):
    address: str
    pubkey: str
    first_name: str = ""
    middle_name: str = ""
    last_name: str = ""
    display_picture: str = ""

    def to_identity(self) -> Identity:
        validate_address(self.address)
        decode_public_key(self.pubkey)
        return Identity(**self.model_dump())


class CreateGroupRequest(BaseModel):
    id: str
    name: str
    description: str = ""
    display_picture: str = ""
    members: list[str] = []


class MemberRequest(BaseModel):
    address: str


class GroupUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    display_picture: Optional[str] = None


class AddressListRequest(BaseModel):
    addresses: list[str]


class RouteMessageRequest(BaseModel):
    recipients: list[str]


class NodeInfo(BaseModel):
    domain: str
    public_url: str
    pubkey: str
    fingerprint: str
    version: str
    authenticated_as: Optional[str] = None
