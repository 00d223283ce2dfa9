"""Tests for the dnspython-backed TXT lookup."""

from types import SimpleNamespace

import dns.exception
import dns.resolver
import pytest

from emsgd.discovery import DnsTxtLookup
from emsgd.errors import LookupFailed, LookupTimedOut


def _rdata(*chunks: bytes):
    return SimpleNamespace(strings=chunks)


@pytest.fixture
def lookup() -> DnsTxtLookup:
    return DnsTxtLookup(nameservers=["127.0.0.1"], timeout=1.0)


def _answer_with(lookup, result):
    calls = []

    async def resolve(name, rdtype):
        calls.append((name, rdtype))
        if isinstance(result, Exception):
            raise result
        return result

    lookup._resolver.resolve = resolve
    return calls


def test_nameservers_and_timeout(lookup):
    assert lookup._resolver.nameservers == ["127.0.0.1"]
    assert lookup._resolver.lifetime == 1.0


@pytest.mark.asyncio
async def test_records_returned(lookup):
    calls = _answer_with(lookup, [_rdata(b"https://emsg.example.com")])
    assert await lookup("_emsg.example.com") == ["https://emsg.example.com"]
    assert calls == [("_emsg.example.com", "TXT")]


@pytest.mark.asyncio
async def test_multi_string_record_joined(lookup):
    _answer_with(lookup, [_rdata(b'{"server":"https://a.', b'example.com"}'), _rdata(b"second")])
    assert await lookup("_emsg.example.com") == ['{"server":"https://a.example.com"}', "second"]


@pytest.mark.asyncio
@pytest.mark.parametrize("exc", [dns.resolver.NXDOMAIN(), dns.resolver.NoAnswer()])
async def test_absent_record_is_empty(lookup, exc):
    _answer_with(lookup, exc)
    assert await lookup("_emsg.nowhere.org") == []


@pytest.mark.asyncio
async def test_timeout(lookup):
    _answer_with(lookup, dns.exception.Timeout())
    with pytest.raises(LookupTimedOut):
        await lookup("_emsg.slow.org")


@pytest.mark.asyncio
@pytest.mark.parametrize("exc", [dns.resolver.NoNameservers(), dns.exception.DNSException("broken")])
async def test_other_failures(lookup, exc):
    _answer_with(lookup, exc)
    with pytest.raises(LookupFailed) as info:
        await lookup("_emsg.broken.org")
    assert not isinstance(info.value, LookupTimedOut)
