"""Signed-request authentication.

Protected calls carry

    Authorization: EMSG <base64(json envelope)>

where the envelope is `{address, timestamp, nonce, signature}` and the
signature is an Ed25519 signature over `METHOD:PATH:TIMESTAMP:NONCE`, built
from the request actually received. Nothing is issued on success: every call
proves key possession again.
"""

import logging
import secrets
import threading
import time
from base64 import b64decode, b64encode
from binascii import Error as BinasciiError
from collections import OrderedDict
from typing import Callable, Optional

from fastapi import Request
from pydantic import ValidationError as PydanticValidationError

from .address import validate_address
from .crypto import KeyPair, verify_signature
from .errors import (
    AuthenticationError,
    BadSignatureEncoding,
    EmsgError,
    InvalidFormat,
    InvalidPublicKey,
    MalformedEnvelope,
    ReplayedNonce,
    SignatureMismatch,
    StaleOrFutureTimestamp,
    UnknownIdentity,
)
from .models import SignedEnvelope

logger = logging.getLogger(__name__)

AUTH_SCHEME = "EMSG"
MAX_PAST = 300  # seconds
MAX_FUTURE = 60


class MissingAuthorization(AuthenticationError):
    pass


def canonical_string(method: str, path: str, timestamp: int, nonce: str) -> str:
    return f"{method.upper()}:{path}:{timestamp}:{nonce}"


def encode_envelope(envelope: SignedEnvelope) -> str:
    return f"{AUTH_SCHEME} {b64encode(envelope.model_dump_json().encode()).decode()}"


def parse_authorization(header: Optional[str]) -> SignedEnvelope:
    """Decode an `Authorization: EMSG ...` header value."""
    if not header:
        raise MissingAuthorization("missing authorization header")
    parts = header.split(" ", 1)
    if len(parts) != 2 or parts[0] != AUTH_SCHEME:
        raise MalformedEnvelope("invalid authorization format")
    try:
        raw = b64decode(parts[1].strip(), validate=True)
    except (BinasciiError, ValueError):
        raise MalformedEnvelope("invalid authorization encoding")
    try:
        envelope = SignedEnvelope.model_validate_json(raw)
    except PydanticValidationError:
        raise MalformedEnvelope("invalid authorization envelope")
    try:
        validate_address(envelope.address)
    except InvalidFormat as e:
        raise MalformedEnvelope(f"invalid envelope address: {e.detail}")
    return envelope


class NonceCache:
    """Remembers accepted (address, nonce) pairs until their timestamp leaves the window.

    Bounded: when full, the oldest entry is dropped. Process-local, so a
    deployment with several replicas needs a shared store instead.
    """

    def __init__(self, max_entries: int = 10000):
        self.max_entries = max_entries
        self._entries: OrderedDict = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def _evict_expired(self, now: float):
        # insertion order is roughly expiry order; stop at the first live entry
        while self._entries:
            key, expiry = next(iter(self._entries.items()))
            if expiry >= now:
                break
            del self._entries[key]

    def add(self, address: str, nonce: str, expires_at: float, now: float) -> bool:
        """Record a pair; False if it was already seen and has not expired."""
        key = (address, nonce)
        with self._lock:
            self._evict_expired(now)
            expiry = self._entries.get(key)
            if expiry is not None and expiry >= now:
                return False
            self._entries.pop(key, None)
            self._entries[key] = expires_at
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
            return True


class RequestAuthenticator:
    def __init__(self, store, clock: Callable[[], float] = time.time,
                 max_past: int = MAX_PAST, max_future: int = MAX_FUTURE,
                 nonce_cache: Optional[NonceCache] = None):
        self.store = store
        self.clock = clock
        self.max_past = max_past
        self.max_future = max_future
        self.nonce_cache = nonce_cache if nonce_cache is not None else NonceCache()

    def verify(self, method: str, path: str, envelope: SignedEnvelope) -> str:
        """Verify an envelope against the request it arrived with; return the address."""
        now = int(self.clock())
        if envelope.timestamp < now - self.max_past or envelope.timestamp > now + self.max_future:
            raise StaleOrFutureTimestamp(
                f"timestamp {envelope.timestamp} outside [{now - self.max_past}, {now + self.max_future}]"
            )

        identity = self.store.get_identity(envelope.address)
        if identity is None:
            raise UnknownIdentity(f"unknown identity: {envelope.address}")

        message = canonical_string(method, path, envelope.timestamp, envelope.nonce)
        try:
            signature = b64decode(envelope.signature, validate=True)
        except (BinasciiError, ValueError):
            raise BadSignatureEncoding("invalid signature encoding")
        try:
            pubkey = identity.pubkey_bytes
        except InvalidPublicKey:
            raise SignatureMismatch(f"stored key for {envelope.address} is unusable")
        if not verify_signature(message.encode(), signature, pubkey):
            raise SignatureMismatch("signature verification failed")

        if not self.nonce_cache.add(envelope.address, envelope.nonce,
                                    envelope.timestamp + self.max_past, now):
            raise ReplayedNonce(f"nonce already used by {envelope.address}")
        return envelope.address

    def authenticate(self, method: str, path: str, header: Optional[str]) -> str:
        return self.verify(method, path, parse_authorization(header))


def sign_request(address: str, keypair: KeyPair, method: str, path: str,
                 timestamp: Optional[int] = None, nonce: Optional[str] = None) -> SignedEnvelope:
    timestamp = int(time.time()) if timestamp is None else timestamp
    nonce = nonce or secrets.token_hex(16)
    signature = keypair.sign(canonical_string(method, path, timestamp, nonce).encode())
    return SignedEnvelope(address=address, timestamp=timestamp, nonce=nonce, signature=signature)


def create_auth_request(address: str, keypair: KeyPair, method: str, path: str) -> str:
    """Build the Authorization header value for one call."""
    return encode_envelope(sign_request(address, keypair, method, path))


# --- FastAPI dependencies ---


def request_path(request: Request) -> str:
    # scope["path"] is already percent-decoded; request.url would cut it at a decoded '#'
    return request.scope["path"]


def _authenticate(request: Request) -> str:
    authenticator: RequestAuthenticator = request.app.state.authenticator
    return authenticator.authenticate(
        request.method, request_path(request), request.headers.get("Authorization")
    )


def require_auth(request: Request) -> str:
    """Verified caller address; any failure answers 401 before the handler runs."""
    try:
        address = _authenticate(request)
    except EmsgError as e:
        logger.warning(f"Rejected {request.method} {request_path(request)}: {e.kind}: {e.detail}")
        raise
    logger.debug(f"Authenticated {address} for {request.method} {request_path(request)}")
    return address


def optional_auth(request: Request) -> Optional[str]:
    """Verified caller address, or None; failures never abort the request."""
    if not request.headers.get("Authorization"):
        return None
    try:
        return _authenticate(request)
    except EmsgError as e:
        logger.debug(f"Optional auth failed for {request_path(request)}: {e.kind}")
        return None
