"""
Unit tests for the synchronization orchestrator.
"""

from pathlib import Path

import pytest

from compound_sync.core.exceptions import (
    InconsistentServerDataError,
    MalformedRecordError,
    SyncConfigError,
)
from compound_sync.core.models import (
    FetchedUpdate,
    RemoteState,
    SyncPhase,
    SyncPlan,
    UpdateUnit,
    VersionMarker,
)
from compound_sync.core.source import UpdateSource
from compound_sync.parsing import SdfRecordParser
from compound_sync.runner import SyncOrchestrator, run_directory_load

from sdf_fixtures import record_lines, records_for, scanning_payload, write_gzip, write_plain


class FakeSource(UpdateSource):
    """
    Update source serving prepared updates from memory.

    ``updates`` maps an update name to ``(records, removed_ids)``; a
    ``removed_ids`` of None means the update ships no manifest.
    """

    def __init__(self, updates=None, final_version=None, base_directory=None,
                 full_reload=False, plan_error=None):
        self.updates = updates or {}
        self.final_version = final_version
        self.base_directory = base_directory
        self.full_reload = full_reload
        self.plan_error = plan_error
        self.fetch_count = 0

    def get_name(self):
        return "fake"

    def check_remote_version(self, local_version):
        return RemoteState(latest_version=self.final_version)

    def is_up_to_date(self, local_version, remote_state):
        return local_version is not None and not self.updates and self.base_directory is None

    def plan(self, local_version, remote_state):
        if self.plan_error is not None:
            raise self.plan_error
        return SyncPlan(
            local_version=local_version,
            updates=[UpdateUnit(name=name, full_reload=self.full_reload) for name in self.updates],
            final_version=self.final_version or local_version,
            base_directory=self.base_directory,
        )

    def fetch(self, plan, work_directory):
        self.fetch_count += 1
        fetched = []
        for unit in plan.updates:
            records, removed_ids = self.updates[unit.name]
            local_base = Path(work_directory) / unit.name
            sdf_directory = local_base / "SDF"
            sdf_directory.mkdir(parents=True, exist_ok=True)
            write_gzip(sdf_directory / "part.sdf.gz", records)

            removed_ids_file = None
            if removed_ids is not None:
                removed_ids_file = local_base / "killed-CIDs"
                removed_ids_file.write_text("".join(f"{i}\n" for i in removed_ids))

            fetched.append(FetchedUpdate(
                name=unit.name,
                sdf_directory=sdf_directory,
                removed_ids_file=removed_ids_file,
                full_reload=unit.full_reload,
            ))
        return fetched


def compound_ids(store):
    return {row["id"] for row in store.conn.execute("SELECT id FROM compounds")}


def seed(store, tmp_path, ids, version, strategy="stamped"):
    directory = tmp_path / "seed"
    directory.mkdir()
    write_plain(directory / "seed.sdf", records_for(ids))
    run_directory_load(store, SdfRecordParser("PUBCHEM_COMPOUND_CID"), directory, "pubchem",
                       version=version, strategy=strategy)


def orchestrator(store, source, parser, tmp_path, **kwargs):
    return SyncOrchestrator(store, source, parser, "pubchem", tmp_path / "work", **kwargs)


@pytest.mark.unit
class TestUpToDate:
    """Runs that find nothing newer."""

    def test_touches_check_date_only(self, sqlite_store, pubchem_parser, tmp_path):
        seed(sqlite_store, tmp_path, [1, 2], version="2020-01-12")
        before = sqlite_store.read_marker("pubchem")
        source = FakeSource(final_version="2020-01-12")

        result = orchestrator(sqlite_store, source, pubchem_parser, tmp_path).run()

        after = sqlite_store.read_marker("pubchem")
        assert result.phase == SyncPhase.UP_TO_DATE
        assert result.final_version == "2020-01-12"
        assert result.phase_history == [
            SyncPhase.IDLE,
            SyncPhase.CHECKING_REMOTE_VERSION,
            SyncPhase.UP_TO_DATE,
        ]
        assert source.fetch_count == 0
        assert after.version == before.version
        assert after.generation == before.generation
        assert after.checked_at >= before.checked_at


@pytest.mark.unit
class TestDeltaRuns:
    """Runs that apply incremental updates."""

    def test_applies_removals_then_records(self, sqlite_store, pubchem_parser, tmp_path):
        seed(sqlite_store, tmp_path, [1, 2, 3], version="2020-01-10")
        source = FakeSource(
            updates={
                "2020-01-11": (records_for([2, 4], name_suffix="-v2"), [1, 2]),
                "2020-01-12": ([record_lines(5)], None),
            },
            final_version="2020-01-12",
        )

        result = orchestrator(sqlite_store, source, pubchem_parser, tmp_path).run()

        assert result.phase == SyncPhase.DONE
        assert result.applied == ["2020-01-11", "2020-01-12"]
        assert result.records_loaded == 3
        assert result.records_removed == 2
        assert result.phase_history == [
            SyncPhase.IDLE,
            SyncPhase.CHECKING_REMOTE_VERSION,
            SyncPhase.RESOLVING_DELTAS,
            SyncPhase.FETCHING,
            SyncPhase.LOADING,
            SyncPhase.COMMITTING,
            SyncPhase.DONE,
        ]
        # 2 was removed by the manifest and re-added by the same delta.
        assert compound_ids(sqlite_store) == {2, 3, 4, 5}
        assert sqlite_store.get_compound(2).payload == scanning_payload("mol-2-v2")

        marker = sqlite_store.read_marker("pubchem")
        assert marker.version == "2020-01-12"
        assert marker.generation == 2
        assert marker.record_count == 4

    def test_delta_rows_carry_newest_stamp(self, sqlite_store, pubchem_parser, tmp_path):
        seed(sqlite_store, tmp_path, [1], version="2020-01-10")
        source = FakeSource(updates={"2020-01-11": (records_for([1, 2]), [])}, final_version="2020-01-11")

        orchestrator(sqlite_store, source, pubchem_parser, tmp_path).run()

        assert sqlite_store.get_compound(1).version == 1
        assert sqlite_store.get_compound(2).version == 1

    def test_set_difference_delta_leaves_stamps_alone(self, sqlite_store, pubchem_parser, tmp_path):
        seed(sqlite_store, tmp_path, [1], version="2020-01-10", strategy="set_difference")
        source = FakeSource(updates={"2020-01-11": (records_for([1, 2]), [])}, final_version="2020-01-11")

        orchestrator(sqlite_store, source, pubchem_parser, tmp_path, strategy="set_difference").run()

        assert sqlite_store.get_compound(2).version == 0

    def test_base_and_delta_share_one_stamp(self, sqlite_store, pubchem_parser, tmp_path):
        base = tmp_path / "base"
        base.mkdir()
        write_plain(base / "Compound_1.sdf", records_for([1, 2]))
        source = FakeSource(
            updates={"2020-01-11": ([record_lines(9)], None)},
            final_version="2020-01-11",
            base_directory=base,
        )

        result = orchestrator(sqlite_store, source, pubchem_parser, tmp_path).run()

        versions = {
            row["id"]: row["version"]
            for row in sqlite_store.conn.execute("SELECT id, version FROM compounds")
        }
        assert versions == {1: 1, 2: 1, 9: 1}
        assert result.generation == 1

    def test_base_directory_is_loaded_first(self, sqlite_store, pubchem_parser, tmp_path):
        base = tmp_path / "base"
        base.mkdir()
        write_plain(base / "Compound_1.sdf", records_for([1, 2, 3]))
        source = FakeSource(
            updates={"2020-01-11": ([record_lines(9)], [3])},
            final_version="2020-01-11",
            base_directory=base,
        )

        result = orchestrator(sqlite_store, source, pubchem_parser, tmp_path).run()

        assert result.phase == SyncPhase.DONE
        assert compound_ids(sqlite_store) == {1, 2, 9}
        marker = sqlite_store.read_marker("pubchem")
        assert marker.version == "2020-01-11"
        assert marker.generation == 1


@pytest.mark.unit
class TestFullReload:
    """Runs that replace the whole corpus."""

    @pytest.mark.parametrize("strategy", ["stamped", "set_difference"])
    def test_new_release_replaces_corpus(self, sqlite_store, pubchem_parser, tmp_path, strategy):
        seed(sqlite_store, tmp_path, [1, 2, 3], version="5.1.9", strategy=strategy)
        source = FakeSource(
            updates={"5.1.10": (records_for([2, 4]), None)},
            final_version="5.1.10",
            full_reload=True,
        )

        result = orchestrator(sqlite_store, source, pubchem_parser, tmp_path, strategy=strategy).run()

        assert result.phase == SyncPhase.DONE
        assert result.records_removed == 2
        assert compound_ids(sqlite_store) == {2, 4}
        marker = sqlite_store.read_marker("pubchem")
        assert marker.version == "5.1.10"
        assert marker.generation == 2
        assert result.generation == 2

    def test_unknown_strategy(self, sqlite_store, pubchem_parser, tmp_path):
        with pytest.raises(SyncConfigError):
            orchestrator(sqlite_store, FakeSource(), pubchem_parser, tmp_path, strategy="sweep")


@pytest.mark.unit
class TestFailures:
    """A failed run leaves the store exactly as it was."""

    def test_malformed_delta_rolls_back(self, sqlite_store, pubchem_parser, tmp_path):
        seed(sqlite_store, tmp_path, [1, 2, 3], version="2020-01-10")
        before = sqlite_store.read_marker("pubchem")
        source = FakeSource(
            updates={
                "2020-01-11": (records_for([4]), [1, 2]),
                "2020-01-12": ([record_lines(5)[:-1]], None),
            },
            final_version="2020-01-12",
        )
        sync = orchestrator(sqlite_store, source, pubchem_parser, tmp_path)

        with pytest.raises(MalformedRecordError):
            sync.run()

        assert sync.phase == SyncPhase.FAILED
        assert sync.phase_history[-2:] == [SyncPhase.LOADING, SyncPhase.FAILED]
        assert compound_ids(sqlite_store) == {1, 2, 3}
        assert sqlite_store.read_marker("pubchem") == before
        assert not sqlite_store.conn.in_transaction
        # Downloads are kept for inspection.
        assert (tmp_path / "work" / "2020-01-11" / "killed-CIDs").exists()

    def test_resolution_error(self, sqlite_store, pubchem_parser, tmp_path):
        source = FakeSource(plan_error=InconsistentServerDataError("gap"))
        sync = orchestrator(sqlite_store, source, pubchem_parser, tmp_path)

        with pytest.raises(InconsistentServerDataError):
            sync.run()

        assert sync.phase_history[-2:] == [SyncPhase.RESOLVING_DELTAS, SyncPhase.FAILED]
        assert source.fetch_count == 0
        assert sqlite_store.read_marker("pubchem") is None

    def test_orchestrator_can_run_again_after_failure(self, sqlite_store, pubchem_parser, tmp_path):
        seed(sqlite_store, tmp_path, [1], version="2020-01-10")
        source = FakeSource(
            updates={"2020-01-11": ([record_lines(2)[:-1]], None)},
            final_version="2020-01-11",
        )
        sync = orchestrator(sqlite_store, source, pubchem_parser, tmp_path)
        with pytest.raises(MalformedRecordError):
            sync.run()

        source.updates = {"2020-01-11": ([record_lines(2)], None)}
        result = sync.run()

        assert result.phase == SyncPhase.DONE
        assert result.phase_history[0] == SyncPhase.IDLE
        assert SyncPhase.FAILED not in result.phase_history
        assert compound_ids(sqlite_store) == {1, 2}


@pytest.mark.unit
class TestRunDirectoryLoad:
    """Tests for the local directory load."""

    def test_writes_marker(self, sqlite_store, pubchem_parser, tmp_path):
        write_plain(tmp_path / "a.sdf", records_for([1, 2]))

        stats = run_directory_load(sqlite_store, pubchem_parser, tmp_path, "chembl", version="34")

        assert stats.records == 2
        assert sqlite_store.read_marker("chembl") == VersionMarker(
            dataset="chembl",
            version="34",
            generation=1,
            record_count=2,
            checked_at=sqlite_store.read_marker("chembl").checked_at,
        )

    def test_failure_rolls_back(self, sqlite_store, pubchem_parser, tmp_path):
        write_plain(tmp_path / "a.sdf", records_for([1]) + [record_lines(2)[:-1]])

        with pytest.raises(MalformedRecordError):
            run_directory_load(sqlite_store, pubchem_parser, tmp_path, "chembl")

        assert compound_ids(sqlite_store) == set()
        assert sqlite_store.read_marker("chembl") is None
