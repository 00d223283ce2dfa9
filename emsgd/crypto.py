"""Ed25519 key pairs and signatures using PyNaCl.

A key pair serves two roles:
- the daemon's own node key (published as `pubkey` in its DNS route record)
- a user's identity key on the client side, used to sign API requests
"""

import json
import os
from base64 import b64decode, b64encode, urlsafe_b64encode

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey


class KeyPair:
    """An Ed25519 signing key and its verify key."""

    def __init__(self, signing_key: SigningKey):
        self._signing_key = signing_key
        self.verify_key = signing_key.verify_key

    @classmethod
    def generate(cls) -> "KeyPair":
        return cls(SigningKey.generate())

    @classmethod
    def from_seed_b64(cls, seed_b64: str) -> "KeyPair":
        return cls(SigningKey(b64decode(seed_b64)))

    @classmethod
    def from_file(cls, path: str) -> "KeyPair":
        with open(path, "r") as f:
            data = json.load(f)
        return cls.from_seed_b64(data["signing_seed"])

    def save(self, path: str):
        data = {
            "signing_seed": self.seed_b64,
            "verify_key": self.pubkey_b64,
        }
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)

    @classmethod
    def load_or_create(cls, path: str) -> "KeyPair":
        if os.path.exists(path):
            return cls.from_file(path)
        keypair = cls.generate()
        keypair.save(path)
        return keypair

    @property
    def seed_b64(self) -> str:
        return b64encode(bytes(self._signing_key)).decode()

    @property
    def pubkey_b64(self) -> str:
        return b64encode(bytes(self.verify_key)).decode()

    @property
    def fingerprint(self) -> str:
        """Short URL-safe fingerprint for display."""
        return urlsafe_b64encode(bytes(self.verify_key)).decode()[:16]

    def sign(self, data: bytes) -> str:
        """Sign data, return base64 signature."""
        signed = self._signing_key.sign(data)
        return b64encode(signed.signature).decode()


def verify_signature(data: bytes, signature: bytes, pubkey: bytes) -> bool:
    """Check a detached signature against a raw 32-byte public key."""
    try:
        VerifyKey(pubkey).verify(data, signature)
    except (BadSignatureError, ValueError):
        return False
    return True
