"""
Unit tests for the JSON Lines AuditLogger.
"""

import json

import pytest

from shared.audit import AuditLogger


class TestAuditLogger:
    @pytest.mark.asyncio
    async def test_writes_json_lines(self, tmp_path):
        path = tmp_path / "logs" / "audit.log"
        audit = AuditLogger(path)

        await audit.log("updater", "startup", {"router": "192.0.2.1"})
        await audit.log("updater", "update", {"device_id": 12}, success=False)
        await audit.close()

        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        first, second = (json.loads(line) for line in lines)
        assert first["action"] == "startup"
        assert first["details"] == {"router": "192.0.2.1"}
        assert first["success"] is True
        assert second["service"] == "updater"
        assert second["success"] is False
        assert "timestamp" in second

    @pytest.mark.asyncio
    async def test_drops_events_after_close(self, tmp_path):
        path = tmp_path / "audit.log"
        audit = AuditLogger(path)
        await audit.log("updater", "startup")
        await audit.close()
        await audit.log("updater", "late")

        lines = path.read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["action"] for line in lines] == ["startup"]

    @pytest.mark.asyncio
    async def test_close_without_events(self, tmp_path):
        audit = AuditLogger(tmp_path / "audit.log")
        await audit.close()
        await audit.close()
        assert not (tmp_path / "audit.log").exists()

    @pytest.mark.asyncio
    async def test_unwritable_path_does_not_raise(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        audit = AuditLogger(blocker / "audit.log")
        await audit.log("updater", "update", {"device_id": 1})
        await audit.close()
