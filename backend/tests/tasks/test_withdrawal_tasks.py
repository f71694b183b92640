# backend/tests/tasks/test_withdrawal_tasks.py
from datetime import timedelta

import pytest

from classpay.core.config import settings
from classpay.schemas.release import AutoApproveSweepResult
from classpay.tasks import withdrawal_tasks
from classpay.tasks.beat_schedule import get_beat_schedule
from classpay.tasks.celery_app import celery_app


class _FakeSession:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class _FakeWithdrawalService:
    def __init__(self, result):
        self.result = result
        self.calls = 0

    def auto_approve_sweep(self):
        self.calls += 1
        return self.result


def test_auto_approve_task_reports_sweep_counts(monkeypatch):
    session = _FakeSession()
    service = _FakeWithdrawalService(
        AutoApproveSweepResult(scanned=3, approved=1, failed=1, approved_ids=["w1"], failed_ids=["w2"])
    )
    monkeypatch.setattr(withdrawal_tasks, "SessionLocal", lambda: session)
    monkeypatch.setattr(withdrawal_tasks, "build_withdrawal_service", lambda db: service)

    result = withdrawal_tasks.auto_approve_withdrawals.run()

    assert result["scanned"] == 3
    assert result["approved"] == 1
    assert result["failed"] == 1
    assert result["failed_ids"] == ["w2"]
    assert "processed_at" in result
    assert service.calls == 1
    assert session.closed is True


def test_session_is_closed_when_sweep_raises(monkeypatch):
    session = _FakeSession()

    class _Broken:
        def auto_approve_sweep(self):
            raise RuntimeError("db down")

    monkeypatch.setattr(withdrawal_tasks, "SessionLocal", lambda: session)
    monkeypatch.setattr(withdrawal_tasks, "build_withdrawal_service", lambda db: _Broken())

    with pytest.raises(RuntimeError):
        withdrawal_tasks.auto_approve_withdrawals.run()

    assert session.closed is True


def test_sweep_is_on_the_beat_schedule():
    schedule = get_beat_schedule()

    entry = schedule["auto-approve-withdrawals"]
    assert entry["task"] == "classpay.tasks.withdrawal_tasks.auto_approve_withdrawals"
    assert entry["schedule"] == timedelta(minutes=settings.withdrawal_auto_approve_sweep_minutes)


def test_task_is_registered_and_routed():
    assert "classpay.tasks.withdrawal_tasks.auto_approve_withdrawals" in celery_app.tasks
    assert celery_app.conf.task_routes["classpay.tasks.withdrawal_tasks.*"] == {"queue": "payments"}
