"""Recipient expansion: direct addresses, CC groups and group broadcasts."""

import logging
from base64 import b64decode
from binascii import Error as BinasciiError
from typing import Callable, Optional

from .crypto import verify_signature
from .errors import BadSignatureEncoding, MissingFields, SignatureMismatch, UnknownIdentity
from .models import Group, Message, SystemEvent

logger = logging.getLogger(__name__)

GroupLookup = Callable[[str], Optional[Group]]

SYSTEM_LOCAL_PART = "system"


def validate(message: Message):
    if not message.from_addr or not message.to or not message.body:
        raise MissingFields("missing required fields: from, to, or body")


def verify_body_signature(message: Message, store):
    """Check a non-empty `signature` over the body against the sender's key."""
    if not message.signature:
        return
    identity = store.get_identity(message.from_addr)
    if identity is None:
        raise UnknownIdentity(f"unknown identity: {message.from_addr}")
    try:
        signature = b64decode(message.signature, validate=True)
    except (BinasciiError, ValueError):
        raise BadSignatureEncoding("invalid message signature encoding")
    if not verify_signature(message.body.encode(), signature, identity.pubkey_bytes):
        raise SignatureMismatch(f"message signature does not match {message.from_addr}")


def expand_recipients(message: Message, group_lookup: GroupLookup) -> set[str]:
    """Concrete delivery set for a message.

    A CC entry naming a known group expands to its members, even when the
    same string is also a valid address.
    """
    recipients = set(message.to)
    for entry in message.cc:
        group = group_lookup(entry)
        if group is not None:
            recipients.update(group.members)
        else:
            recipients.add(entry)
    if message.group_id:
        group = group_lookup(message.group_id)
        if group is not None:
            recipients.update(group.members)
    return recipients


class MessageFanout:
    """Validates, expands and stores outgoing messages."""

    def __init__(self, store, group_lookup: GroupLookup, domain: str):
        self.store = store
        self.group_lookup = group_lookup
        self.system_address = f"{SYSTEM_LOCAL_PART}#{domain}"

    def validate(self, message: Message):
        validate(message)

    def expand_recipients(self, message: Message) -> set[str]:
        return expand_recipients(message, self.group_lookup)

    def deliver(self, message: Message) -> set[str]:
        """Validate and store a message under every expanded recipient."""
        self.validate(message)
        verify_body_signature(message, self.store)
        recipients = self.expand_recipients(message)
        self.store.append_message(message, recipients)
        logger.info(f"Stored {message.msg_id} from {message.from_addr} for {len(recipients)} recipients")
        return recipients

    def broadcast_event(self, event: SystemEvent):
        """Event subscriber: tell the group's current members what changed."""
        group = self.group_lookup(event.group_id)
        if group is None:
            return
        # A user who just left or was removed still hears about it.
        recipients = set(group.members)
        if event.subject:
            recipients.add(event.subject)
        if not recipients:
            return
        if event.subject:
            body = f"[SYSTEM] {event.kind}: {event.subject} in group {event.group_id}"
        else:
            body = f"[SYSTEM] {event.kind} in group {event.group_id}"
        message = Message(
            from_addr=self.system_address,
            to=sorted(recipients),
            group_id=event.group_id,
            body=body,
        )
        self.store.append_message(message, recipients)
