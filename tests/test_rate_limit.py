# tests/test_rate_limit.py
"""
Tests for the rate limit key: which client address a request is counted against.
"""

from types import SimpleNamespace

import pytest
from fastapi import Request

from idbridge.core.rate_limit_config import RATE_LIMITS, get_real_ip
from tests.conftest import make_settings


def make_request(forwarded=(), hops=None, peer="192.0.2.1") -> Request:
    """Request from ``peer`` carrying one X-Forwarded-For header per entry of ``forwarded``"""
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/sign_in",
        "headers": [(b"x-forwarded-for", value.encode("latin-1")) for value in forwarded],
        "client": (peer, 50000),
    }
    if hops is not None:
        scope["app"] = SimpleNamespace(state=SimpleNamespace(settings=make_settings(TRUSTED_PROXY_HOPS=hops)))
    return Request(scope)


class TestGetRealIp:
    """Only proxy-appended X-Forwarded-For entries are trusted"""

    def test_single_proxy_uses_right_most_entry(self):
        request = make_request(["10.9.9.9, 203.0.113.7"], hops=1)
        assert get_real_ip(request) == "203.0.113.7"

    def test_client_cannot_choose_its_key(self):
        keys = {get_real_ip(make_request([f"10.0.0.{i}, 203.0.113.7"], hops=1)) for i in range(20)}
        assert keys == {"203.0.113.7"}

    def test_two_proxies(self):
        request = make_request(["10.9.9.9, 203.0.113.7, 172.16.0.2"], hops=2)
        assert get_real_ip(request) == "203.0.113.7"

    def test_repeated_headers_are_combined(self):
        request = make_request(["10.9.9.9", "203.0.113.7"], hops=1)
        assert get_real_ip(request) == "203.0.113.7"

    def test_fewer_entries_than_proxies_uses_peer(self):
        request = make_request(["203.0.113.7"], hops=2)
        assert get_real_ip(request) == "192.0.2.1"

    def test_no_header_uses_peer(self):
        assert get_real_ip(make_request(hops=1)) == "192.0.2.1"

    @pytest.mark.parametrize("hops", [0, None])
    def test_header_ignored_without_trusted_proxies(self, hops):
        request = make_request(["203.0.113.7"], hops=hops)
        assert get_real_ip(request) == "192.0.2.1"

    def test_blank_entries_skipped(self):
        request = make_request(["10.9.9.9, , 203.0.113.7 ,"], hops=1)
        assert get_real_ip(request) == "203.0.113.7"


def test_credential_limits_declared():
    assert set(RATE_LIMITS) == {"sign_in", "provision"}
