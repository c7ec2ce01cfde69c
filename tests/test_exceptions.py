"""Tests for the error types and their user-facing messages."""

from __future__ import annotations

import pytest

from k10ls.core.exceptions import (
    ClientInitError,
    ConfigError,
    K10lsError,
    ResolutionError,
    ResolutionReason,
    TunnelError,
    format_error_for_user,
)


class TestMessages:
    """Tests for error message construction."""

    def test_config_error_with_path(self):
        error = ConfigError("Invalid TOML: line 2", path="/etc/k10ls.toml")
        assert error.message == "/etc/k10ls.toml: Invalid TOML: line 2"
        assert error.code == "CONFIG_ERROR"

    def test_client_init_error(self):
        error = ClientInitError("prod", "kubeconfig not found")
        assert error.context == "prod"
        assert "Cannot connect to context 'prod'" in str(error)
        assert error.reason == "kubeconfig not found"

    @pytest.mark.parametrize(
        ("reason", "expected"),
        [
            (ResolutionReason.NOT_FOUND, "svc/db not found"),
            (ResolutionReason.NO_SELECTOR, "svc/db has no selector"),
            (ResolutionReason.NO_MEMBERS, "no pods found for svc/db"),
            (ResolutionReason.API_ERROR, "cluster API error while resolving svc/db"),
        ],
    )
    def test_resolution_messages(self, reason, expected):
        assert str(ResolutionError(reason, "svc/db")) == expected

    def test_resolution_detail(self):
        error = ResolutionError(ResolutionReason.API_ERROR, "label/app=x", detail="timed out")
        assert error.message.endswith(": timed out")

    def test_tunnel_error_endpoint_prefix(self):
        assert str(TunnelError("pod is Failed", endpoint="apps/api-0")) == "apps/api-0: pod is Failed"
        assert str(TunnelError("tunnel closed")) == "tunnel closed"

    def test_hierarchy(self):
        for error in (
            ConfigError("x"),
            ClientInitError("c", "r"),
            ResolutionError(ResolutionReason.NOT_FOUND, "t"),
            TunnelError("x"),
        ):
            assert isinstance(error, K10lsError)


class TestFormatErrorForUser:
    """Tests for format_error_for_user."""

    def test_k10ls_error(self):
        assert format_error_for_user(TunnelError("boom", endpoint="a/b")) == "a/b: boom"

    def test_os_error(self):
        error = OSError(98, "Address already in use")
        assert format_error_for_user(error) == "Address already in use (errno 98)"

    def test_plain_exception_first_line(self):
        error = ValueError("bad value\nTraceback details")
        assert format_error_for_user(error) == "ValueError: bad value"

    def test_empty_message(self):
        assert format_error_for_user(RuntimeError()) == "RuntimeError"
