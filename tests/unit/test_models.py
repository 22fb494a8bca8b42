"""
Unit tests for core models.

These tests verify the data models without external dependencies.
"""

import sqlite3

import pytest

from compound_sync.core.exceptions import StoreError
from compound_sync.core.models import (
    DeltaKind,
    DeltaWindow,
    RemoteState,
    SyncPlan,
    UpdateUnit,
)
from compound_sync.core.source import UpdateSource
from compound_sync.core.transaction import Transaction


class PlanOnlySource(UpdateSource):
    """Source relying on the plan-based up-to-date check."""

    def __init__(self, updates):
        self.updates = updates

    def check_remote_version(self, local_version):
        return RemoteState()

    def plan(self, local_version, remote_state):
        return SyncPlan(local_version=local_version, updates=list(self.updates))

    def fetch(self, plan, work_directory):
        return []

    def get_name(self):
        return "plan-only"


@pytest.mark.unit
class TestDeltaWindow:
    """Tests for DeltaWindow."""

    def test_weekly_covered_span(self):
        window = DeltaWindow(DeltaKind.WEEKLY, "2020-01-05")

        assert window.covered_span == ("2019-12-29", "2020-01-05")

    def test_daily_has_no_span(self):
        assert DeltaWindow(DeltaKind.DAILY, "2020-01-05").covered_span is None

    def test_remote_path(self):
        assert DeltaWindow(DeltaKind.DAILY, "2020-01-11").remote_path == "/Daily/2020-01-11"
        assert DeltaWindow(DeltaKind.WEEKLY, "2020-01-05").remote_path == "/Weekly/2020-01-05"

    def test_windows_are_hashable_values(self):
        windows = {DeltaWindow(DeltaKind.DAILY, "2020-01-11"), DeltaWindow(DeltaKind.DAILY, "2020-01-11")}

        assert len(windows) == 1


@pytest.mark.unit
class TestSyncPlan:
    """Tests for SyncPlan."""

    def test_empty_plan_is_up_to_date(self):
        assert SyncPlan(local_version="2020-01-12").is_up_to_date

    def test_plan_with_updates(self):
        plan = SyncPlan(local_version="2020-01-10", updates=[UpdateUnit("2020-01-11")])

        assert not plan.is_up_to_date

    def test_empty_store_is_never_up_to_date(self):
        assert not SyncPlan(local_version=None).is_up_to_date

    def test_default_source_check_uses_plan(self):
        assert PlanOnlySource([]).is_up_to_date("2020-01-12", RemoteState())
        assert not PlanOnlySource([UpdateUnit("2020-01-13")]).is_up_to_date("2020-01-12", RemoteState())


@pytest.mark.unit
class TestTransaction:
    """Tests for Transaction."""

    @pytest.fixture
    def connection(self):
        conn = sqlite3.connect(":memory:")
        conn.execute("CREATE TABLE t (x INTEGER)")
        conn.commit()
        yield conn
        conn.close()

    def test_commit(self, connection):
        txn = Transaction(connection)
        txn.cursor().execute("INSERT INTO t VALUES (1)")
        txn.commit()

        assert not txn.is_active
        assert connection.execute("SELECT COUNT(*) FROM t").fetchone()[0] == 1

    def test_context_exit_rolls_back(self, connection):
        with Transaction(connection) as txn:
            txn.cursor().execute("INSERT INTO t VALUES (1)")

        assert not txn.is_active
        assert connection.execute("SELECT COUNT(*) FROM t").fetchone()[0] == 0

    def test_rollback_after_commit_is_noop(self, connection):
        txn = Transaction(connection)
        txn.commit()

        txn.rollback()

        assert not txn.is_active

    def test_commit_twice(self, connection):
        txn = Transaction(connection)
        txn.commit()

        with pytest.raises(StoreError, match="already finished"):
            txn.commit()

    def test_unique_ids(self, connection):
        assert Transaction(connection).transaction_id != Transaction(connection).transaction_id
