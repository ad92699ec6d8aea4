"""
Unit tests for shared helpers: keychain lookup with env fallback, and the
database health check.
"""

import subprocess
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from shared.db import get_connection_pool, health_check
from shared.secrets import get_secret


# ---------------------------------------------------------------------------
# Secrets
# ---------------------------------------------------------------------------


class TestGetSecret:
    def test_keychain_hit(self):
        result = subprocess.CompletedProcess([], 0, stdout="s3cr3t\n", stderr="")
        with patch("shared.secrets.subprocess.run", return_value=result) as run:
            assert get_secret("router_password") == "s3cr3t"
        assert run.call_args.args[0] == [
            "secret-tool", "lookup", "service", "ppp-updater", "key", "router_password",
        ]

    def test_env_fallback_when_tool_missing(self, monkeypatch):
        monkeypatch.setenv("PPP_UPDATER_ROUTER_PASSWORD", "from-env")
        with patch("shared.secrets.subprocess.run", side_effect=FileNotFoundError):
            assert get_secret("router_password") == "from-env"

    def test_env_fallback_when_keychain_empty(self, monkeypatch):
        monkeypatch.setenv("PPP_UPDATER_DB_PASSWORD", "pw")
        result = subprocess.CompletedProcess([], 1, stdout="", stderr="")
        with patch("shared.secrets.subprocess.run", return_value=result):
            assert get_secret("db-password") == "pw"

    def test_env_fallback_on_timeout(self, monkeypatch):
        monkeypatch.setenv("PPP_UPDATER_ROUTER_PASSWORD", "pw")
        with patch(
            "shared.secrets.subprocess.run",
            side_effect=subprocess.TimeoutExpired("secret-tool", 10),
        ):
            assert get_secret("router_password") == "pw"

    def test_missing_everywhere(self, monkeypatch):
        monkeypatch.delenv("PPP_UPDATER_ROUTER_PASSWORD", raising=False)
        with patch("shared.secrets.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(RuntimeError, match="PPP_UPDATER_ROUTER_PASSWORD"):
                get_secret("router_password")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class _AcquireCM:
    def __init__(self, conn):
        self._conn = conn

    async def __aenter__(self):
        return self._conn

    async def __aexit__(self, exc_type, exc, tb):
        return False


class TestDatabase:
    @pytest.mark.asyncio
    async def test_pool_created_with_defaults(self):
        with patch("shared.db.asyncpg.create_pool", new_callable=AsyncMock) as create:
            await get_connection_pool(
                {"host": "db", "database": "billing", "user": "ppp_updater", "password": "x"}
            )
        kwargs = create.await_args.kwargs
        assert kwargs["port"] == 5432
        assert kwargs["database"] == "billing"
        assert kwargs["min_size"] == 1
        assert kwargs["max_size"] == 4

    @pytest.mark.asyncio
    async def test_health_check_ok(self):
        conn = MagicMock()
        conn.fetchval = AsyncMock(return_value=1)
        pool = MagicMock()
        pool.acquire.return_value = _AcquireCM(conn)
        assert await health_check(pool) is True

    @pytest.mark.asyncio
    async def test_health_check_failure(self):
        pool = MagicMock()
        pool.acquire.side_effect = OSError("connection refused")
        assert await health_check(pool) is False
