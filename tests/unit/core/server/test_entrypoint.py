"""Tests for the server entry point's bind guard."""

from __future__ import annotations

import pytest

from vitalsync.core.server.main import _is_loopback_host, run


@pytest.mark.parametrize(
    "host, expected",
    [("127.0.0.1", True), ("localhost", True), ("::1", True), ("0.0.0.0", False),
     ("10.0.0.5", False), ("example.com", False)],
)
def test_loopback_detection(host, expected):
    assert _is_loopback_host(host) is expected


def test_refuses_public_bind(monkeypatch):
    monkeypatch.setenv("VITALSYNC_HOST", "0.0.0.0")
    monkeypatch.setenv("VITALSYNC_ALLOW_INSECURE_BIND", "false")
    with pytest.raises(RuntimeError, match="non-loopback"):
        run()
