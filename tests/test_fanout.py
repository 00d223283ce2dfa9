"""Tests for recipient expansion and message storage."""

import pytest

from emsgd import events
from emsgd.errors import (
    BadSignatureEncoding,
    DuplicateMessage,
    MissingFields,
    SignatureMismatch,
    UnknownIdentity,
)
from emsgd.fanout import MessageFanout, expand_recipients, validate
from emsgd.models import Group, Message, SystemEvent

GROUPS = {
    "groupX": Group(id="groupX", name="X", members=["b", "c"]),
    "team": Group(id="team", name="Team", members=["c", "d", "e"]),
}


def _lookup(group_id):
    return GROUPS.get(group_id)


class TestValidate:

    def test_complete_message(self):
        validate(Message(from_addr="a#x.com", to=["b#x.com"], body="hi"))

    @pytest.mark.parametrize("fields", [
        {"to": ["b#x.com"], "body": "hi"},
        {"from_addr": "a#x.com", "body": "hi"},
        {"from_addr": "a#x.com", "to": ["b#x.com"]},
        {"from_addr": "a#x.com", "to": ["b#x.com"], "body": ""},
    ])
    def test_missing_fields(self, fields):
        with pytest.raises(MissingFields):
            validate(Message(**fields))

    def test_from_alias(self):
        message = Message.model_validate({"from": "a#x.com", "to": ["b#x.com"], "body": "hi"})
        assert message.from_addr == "a#x.com"
        assert message.model_dump(by_alias=True)["from"] == "a#x.com"


class TestExpandRecipients:

    def test_cc_group_deduplicated(self):
        message = Message(from_addr="a", to=["b"], cc=["groupX"], group_id="", body="hi")
        assert expand_recipients(message, _lookup) == {"b", "c"}

    def test_cc_plain_address(self):
        message = Message(from_addr="a", to=["b"], cc=["z#x.com"], body="hi")
        assert expand_recipients(message, _lookup) == {"b", "z#x.com"}

    def test_group_broadcast(self):
        message = Message(from_addr="a", to=["b"], group_id="team", body="hi")
        assert expand_recipients(message, _lookup) == {"b", "c", "d", "e"}

    def test_unknown_group_id_adds_nothing(self):
        message = Message(from_addr="a", to=["b"], group_id="ghost", body="hi")
        assert expand_recipients(message, _lookup) == {"b"}

    def test_everything_together(self):
        message = Message(from_addr="a", to=["b", "b"], cc=["groupX", "f"], group_id="team", body="hi")
        assert expand_recipients(message, _lookup) == {"b", "c", "d", "e", "f"}


class TestMessageFanout:

    @pytest.fixture
    def fanout(self, store, groups):
        groups.create_group("crew", "Crew", members=["bob#example.com", "carol#example.com"])
        return MessageFanout(store, groups.get, "example.com")

    def test_deliver_indexes_every_recipient(self, fanout, store):
        message = Message(from_addr="alice#example.com", to=["dave#example.org"], cc=["crew"], body="hello")
        recipients = fanout.deliver(message)
        assert recipients == {"dave#example.org", "bob#example.com", "carol#example.com"}
        for address in recipients:
            [stored] = store.query_messages_for_recipient(address)
            assert stored.msg_id == message.msg_id
            assert stored.body == "hello"

    def test_deliver_rejects_incomplete(self, fanout, store):
        with pytest.raises(MissingFields):
            fanout.deliver(Message(from_addr="alice#example.com", body="no one"))

    def test_broadcast_event(self, fanout, store):
        fanout.broadcast_event(SystemEvent(kind=events.USER_JOINED, group_id="crew", subject="carol#example.com"))
        [msg] = store.query_messages_for_recipient("bob#example.com")
        assert msg.from_addr == "system#example.com"
        assert msg.group_id == "crew"
        assert msg.body == "[SYSTEM] user_joined: carol#example.com in group crew"

    def test_broadcast_reaches_departed_member(self, fanout, store):
        fanout.broadcast_event(SystemEvent(kind=events.USER_REMOVED, group_id="crew", subject="zed#example.com"))
        assert len(store.query_messages_for_recipient("zed#example.com")) == 1

    def test_broadcast_metadata_change(self, fanout, store):
        fanout.broadcast_event(SystemEvent(kind=events.GROUP_RENAMED, group_id="crew"))
        [msg] = store.query_messages_for_recipient("carol#example.com")
        assert msg.body == "[SYSTEM] group_renamed in group crew"

    def test_broadcast_unknown_group(self, fanout, store):
        fanout.broadcast_event(SystemEvent(kind=events.GROUP_RENAMED, group_id="ghost"))
        assert store.query_messages_for_recipient("bob#example.com") == []

    def test_signed_body_accepted(self, fanout, store, alice, alice_key):
        message = Message(from_addr=alice, to=["bob#example.com"], body="hello",
                          signature=alice_key.sign(b"hello"))
        fanout.deliver(message)
        [stored] = store.query_messages_for_recipient("bob#example.com")
        assert stored.signature == message.signature

    def test_signature_over_other_body_rejected(self, fanout, store, alice, alice_key):
        message = Message(from_addr=alice, to=["bob#example.com"], body="hello",
                          signature=alice_key.sign(b"goodbye"))
        with pytest.raises(SignatureMismatch):
            fanout.deliver(message)
        assert store.query_messages_for_recipient("bob#example.com") == []

    def test_signature_by_other_key_rejected(self, fanout, alice, bob_key):
        message = Message(from_addr=alice, to=["bob#example.com"], body="hello",
                          signature=bob_key.sign(b"hello"))
        with pytest.raises(SignatureMismatch):
            fanout.deliver(message)

    def test_signature_not_base64(self, fanout, alice):
        message = Message(from_addr=alice, to=["bob#example.com"], body="hello", signature="not base64!")
        with pytest.raises(BadSignatureEncoding):
            fanout.deliver(message)

    def test_signature_from_unknown_sender(self, fanout, alice_key):
        message = Message(from_addr="ghost#example.com", to=["bob#example.com"], body="hello",
                          signature=alice_key.sign(b"hello"))
        with pytest.raises(UnknownIdentity):
            fanout.deliver(message)

    def test_duplicate_msg_id_keeps_original(self, fanout, store):
        original = Message(from_addr="alice#example.com", to=["bob#example.com"], body="first")
        fanout.deliver(original)
        forged = Message(msg_id=original.msg_id, from_addr="mallory#example.com",
                         to=["mallory#example.com"], body="forged")
        with pytest.raises(DuplicateMessage):
            fanout.deliver(forged)
        [stored] = store.query_messages_for_recipient("bob#example.com")
        assert (stored.from_addr, stored.body) == ("alice#example.com", "first")
        assert store.query_messages_for_recipient("mallory#example.com") == []
