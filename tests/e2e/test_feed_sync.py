"""
End-to-end tests for delta feed synchronization.

These tests exercise the complete flow:
1. An in-memory FTP feed publishes daily and weekly windows
2. The orchestrator resolves, downloads and applies them
3. Data and the version marker are persisted to SQLite
4. A second run finds nothing newer

No external network dependencies.
"""

import gzip

import pytest

from compound_sync.core.exceptions import InconsistentServerDataError
from compound_sync.core.models import SyncPhase
from compound_sync.delta import FtpDeltaSource
from compound_sync.runner import SyncOrchestrator

from sdf_fixtures import records_for, sdf_text, write_gzip


class FeedServer:
    """FTP client double serving an in-memory feed."""

    def __init__(self):
        self.files = {}

    def publish(self, kind, name, records, removed_ids=()):
        base = f"/feed/{kind}/{name}"
        self.files[f"{base}/killed-CIDs"] = "".join(f"{i}\n" for i in removed_ids).encode("ascii")
        self.files[f"{base}/SDF/Compound_{name}.sdf.gz"] = gzip.compress(sdf_text(records).encode("latin-1"))

    def connect(self, host, port, timeout=None):
        pass

    def login(self, user, password):
        pass

    def set_pasv(self, value):
        pass

    def nlst(self, path):
        prefix = path.rstrip("/") + "/"
        return sorted({p[len(prefix):].split("/")[0] for p in self.files if p.startswith(prefix)})

    def retrbinary(self, command, callback):
        callback(self.files[command[len("RETR "):]])

    def quit(self):
        pass


@pytest.fixture
def feed():
    return FeedServer()


@pytest.fixture
def base_dump(tmp_path):
    directory = tmp_path / "dump"
    directory.mkdir()
    write_gzip(directory / "Compound_000000001_000500000.sdf.gz", records_for([1, 2, 3, 4]))
    write_gzip(directory / "Compound_000500001_001000000.sdf.gz", records_for([500001]))
    return directory


def make_orchestrator(store, parser, feed, base_dump, tmp_path):
    source = FtpDeltaSource(
        "ftp.example.org",
        root_path="/feed",
        base_directory=base_dump,
        base_version="2020-01-03",
        ftp_factory=lambda: feed,
    )
    return SyncOrchestrator(store, source, parser, "pubchem", tmp_path / "work", batch_size=2)


def compound_ids(store):
    return {row["id"] for row in store.conn.execute("SELECT id FROM compounds")}


@pytest.mark.e2e
class TestFeedSynchronization:
    """Full runs against a feed."""

    def test_initial_run_then_up_to_date(self, sqlite_store, pubchem_parser, feed, base_dump, tmp_path):
        feed.publish("Weekly", "2020-01-05", records_for([2], name_suffix="-w"), removed_ids=[1])
        feed.publish("Daily", "2020-01-06", records_for([5]), removed_ids=[3])
        feed.publish("Daily", "2020-01-07", records_for([2], name_suffix="-d"))

        result = make_orchestrator(sqlite_store, pubchem_parser, feed, base_dump, tmp_path).run()

        assert result.phase == SyncPhase.DONE
        assert result.applied == ["2020-01-05", "2020-01-06", "2020-01-07"]
        assert compound_ids(sqlite_store) == {2, 4, 5, 500001}
        assert "mol-2-d" in sqlite_store.get_compound(2).payload
        marker = sqlite_store.read_marker("pubchem")
        assert marker.version == "2020-01-07"
        assert marker.record_count == 4

        second = make_orchestrator(sqlite_store, pubchem_parser, feed, base_dump, tmp_path).run()

        assert second.phase == SyncPhase.UP_TO_DATE
        assert sqlite_store.read_marker("pubchem").generation == marker.generation

    def test_next_day_applies_only_new_window(self, sqlite_store, pubchem_parser, feed, base_dump, tmp_path):
        feed.publish("Daily", "2020-01-03", records_for([9]))
        feed.publish("Daily", "2020-01-04", records_for([6]))
        make_orchestrator(sqlite_store, pubchem_parser, feed, base_dump, tmp_path).run()

        feed.publish("Daily", "2020-01-05", records_for([7]), removed_ids=[6])
        result = make_orchestrator(sqlite_store, pubchem_parser, feed, base_dump, tmp_path).run()

        assert result.applied == ["2020-01-05"]
        assert compound_ids(sqlite_store) == {1, 2, 3, 4, 7, 500001}
        assert sqlite_store.read_marker("pubchem").generation == 2

    def test_gap_in_feed_leaves_store_untouched(self, sqlite_store, pubchem_parser, feed, base_dump, tmp_path):
        feed.publish("Daily", "2020-01-20", records_for([8]))

        with pytest.raises(InconsistentServerDataError):
            make_orchestrator(sqlite_store, pubchem_parser, feed, base_dump, tmp_path).run()

        assert compound_ids(sqlite_store) == set()
        assert sqlite_store.read_marker("pubchem") is None
