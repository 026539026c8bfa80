"""Tests for the ScriptRecord schema."""

from datetime import datetime, timezone

import pytest

from ondeploy.schemas import OUTCOMES, ScriptRecord, ScriptStatus, parse_status


T0 = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
T1 = datetime(2026, 1, 2, 3, 5, 0, tzinfo=timezone.utc)


class TestScriptStatus:

    def test_values(self):
        assert ScriptStatus.RUNNING.value == "running"
        assert ScriptStatus.SUCCESS.value == "success"
        assert ScriptStatus.FAIL.value == "fail"

    def test_outcomes(self):
        assert OUTCOMES == (ScriptStatus.SUCCESS, ScriptStatus.FAIL)

    def test_parse_none(self):
        assert parse_status(None) is None

    def test_parse_known(self):
        assert parse_status("fail") is ScriptStatus.FAIL

    def test_parse_unknown_raises(self):
        with pytest.raises(ValueError):
            parse_status("paused")


class TestScriptRecord:

    def test_new_record_has_no_status(self):
        record = ScriptRecord(identity="AddIndex")
        assert record.status is None
        assert record.started_at is None
        assert record.ended_at is None

    def test_status_string_is_coerced(self):
        record = ScriptRecord(identity="AddIndex", status="success")
        assert record.status is ScriptStatus.SUCCESS

    def test_running_with_end_is_rejected(self):
        with pytest.raises(ValueError, match="Running scripts should not have ended_at"):
            ScriptRecord(identity="A", status=ScriptStatus.RUNNING, started_at=T0, ended_at=T1)

    def test_mark_running_clears_end(self):
        record = ScriptRecord(identity="A", status=ScriptStatus.FAIL, started_at=T0, ended_at=T1)
        record.mark_running(now=T1)

        assert record.status is ScriptStatus.RUNNING
        assert record.started_at == T1
        assert record.ended_at is None

    def test_mark_outcome_sets_end(self):
        record = ScriptRecord(identity="A")
        record.mark_running(now=T0)
        record.mark_outcome(ScriptStatus.SUCCESS, now=T1)

        assert record.status is ScriptStatus.SUCCESS
        assert record.started_at == T0
        assert record.ended_at == T1

    def test_mark_outcome_rejects_running(self):
        record = ScriptRecord(identity="A")
        with pytest.raises(ValueError, match="Not a final outcome"):
            record.mark_outcome(ScriptStatus.RUNNING)

    def test_to_dict_uses_persisted_field_names(self):
        record = ScriptRecord(identity="A", status=ScriptStatus.SUCCESS, started_at=T0, ended_at=T1)
        assert record.to_dict() == {
            "identity": "A",
            "status": "success",
            "startDate": T0.isoformat(),
            "endDate": T1.isoformat(),
        }

    def test_to_dict_without_status(self):
        data = ScriptRecord(identity="A").to_dict()
        assert data["status"] is None
        assert data["startDate"] is None
        assert data["endDate"] is None

    def test_from_dict(self):
        record = ScriptRecord.from_dict({
            "identity": "A",
            "status": "running",
            "startDate": T0.isoformat(),
            "endDate": None,
        })
        assert record.status is ScriptStatus.RUNNING
        assert record.started_at == T0
        assert record.ended_at is None

    def test_from_dict_unknown_status_raises(self):
        with pytest.raises(ValueError):
            ScriptRecord.from_dict({"identity": "A", "status": "paused"})
