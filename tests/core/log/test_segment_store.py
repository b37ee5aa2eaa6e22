"""Tests for the segment store and rotation."""

import json
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from eventbus.core.log.format import Event, encode_event
from eventbus.core.log.log import LATEST_FILE_NAME, SegmentStore
from eventbus.core.log.segment import LogSegment
from eventbus.errors import NotFoundError


def make_event(i, payload=None):
    return Event(
        id=f"20261017T093000.{i:06d}-00000000",
        timestamp=datetime(2026, 10, 17, 9, 30, tzinfo=timezone.utc),
        type="test.event",
        channel="test",
        payload=payload if payload is not None else {"seq": i},
    )


class TestSegmentStore:
    """Test SegmentStore class."""
    
    @pytest.fixture
    def temp_dir(self):
        """Create a temporary directory for tests."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir) / "events"
    
    @pytest.fixture
    def store(self, temp_dir):
        """Create an initialized store."""
        store = SegmentStore(temp_dir, max_segment_size=4096, rotation_headroom=256)
        store.init()
        return store
    
    def test_init_creates_layout(self, store, temp_dir):
        """Init creates the directory, markers dir, first segment and pointer."""
        assert (temp_dir / "markers").is_dir()
        assert (temp_dir / "events.000001.jsonl.gz").is_file()
        assert (temp_dir / "events.000001.meta.json").is_file()
        assert (temp_dir / LATEST_FILE_NAME).read_text().strip() == "events.000001.jsonl.gz"
        assert store.latest_name() == "events.000001.jsonl.gz"
    
    def test_init_is_idempotent(self, store):
        """Running init again changes nothing."""
        store.append(make_event(0))
        
        store.init()
        store.init()
        
        assert store.list_files() == ["events.000001.jsonl.gz"]
        assert store.status().line_count == 1
    
    def test_invalid_limits(self, temp_dir):
        """Size limits are validated."""
        with pytest.raises(ValueError):
            SegmentStore(temp_dir, max_segment_size=0)
        with pytest.raises(ValueError):
            SegmentStore(temp_dir, rotation_headroom=-1)
    
    def test_append_returns_position(self, store):
        """Append returns the position just past the new line."""
        line = encode_event(make_event(0))
        
        position = store.append(make_event(0))
        
        assert position.file == "events.000001.jsonl.gz"
        assert position.offset == len(line) + 1
    
    def test_append_initializes_lazily(self, temp_dir):
        """Appending to a fresh directory creates the first segment."""
        store = SegmentStore(temp_dir)
        
        store.append(make_event(0))
        
        assert store.list_files() == ["events.000001.jsonl.gz"]
    
    def test_line_count_tracks_appends(self, store):
        """Every append adds exactly one line."""
        for i in range(5):
            store.append(make_event(i))
        
        assert store.status().line_count == 5
    
    def test_read_from(self, store):
        """Entries carry their segment name and ending offset."""
        positions = [store.append(make_event(i)) for i in range(3)]
        
        entries = store.read_from("events.000001.jsonl.gz", 0)
        
        assert [entry.position for entry in entries] == positions
        assert [entry.event.payload["seq"] for entry in entries] == [0, 1, 2]
    
    def test_read_from_missing_segment(self, store):
        """Reading an unknown segment is NotFound."""
        with pytest.raises(NotFoundError):
            store.read_from("events.000099.jsonl.gz", 0)
        with pytest.raises(NotFoundError):
            store.read_from("../latest", 0)
    
    def test_rotation(self, store):
        """Segments rotate before exceeding the size limit."""
        for i in range(100):
            store.append(make_event(i, payload={"seq": i, "pad": "x" * 100}))
        
        files = store.list_files()
        assert len(files) > 1
        
        for name in files:
            assert store.status(name).uncompressed_size <= store.max_segment_size
        
        assert sum(store.status(name).line_count for name in files) == 100
        assert store.latest_name() == files[-1]
    
    def test_rotation_preserves_order(self, store):
        """Reading segments in order yields events in append order."""
        for i in range(60):
            store.append(make_event(i, payload={"seq": i, "pad": "x" * 100}))
        
        seqs = []
        for name in store.list_files():
            seqs.extend(entry.event.payload["seq"] for entry in store.read_from(name))
        
        assert seqs == list(range(60))
    
    def test_rotation_threshold(self, store):
        """Rotation happens when size plus record plus headroom reaches the maximum."""
        record = len(encode_event(make_event(0))) + 1
        segment = store.segment("events.000001.jsonl.gz")
        store.append(make_event(0))
        
        metadata = segment.read_metadata()
        metadata.uncompressed_size = store.max_segment_size - store.rotation_headroom - record
        segment.write_metadata(metadata)
        
        position = store.append(make_event(1))
        
        assert position.file == "events.000002.jsonl.gz"
        assert store.latest_name() == "events.000002.jsonl.gz"
    
    def test_oversized_event_goes_into_empty_segment(self, store):
        """A record larger than the maximum still lands in an empty segment."""
        position = store.append(make_event(0, payload={"pad": "x" * 8192}))
        
        assert position.file == "events.000001.jsonl.gz"
        
        position = store.append(make_event(1))
        
        assert position.file == "events.000002.jsonl.gz"
    
    def test_list_files_order(self, store, temp_dir):
        """Segments are listed by sequence, ignoring other files."""
        for seq in (10, 2, 3):
            LogSegment(temp_dir, seq).create()
        (temp_dir / "notes.txt").write_text("not a segment")
        
        assert store.list_files() == [
            "events.000001.jsonl.gz",
            "events.000002.jsonl.gz",
            "events.000003.jsonl.gz",
            "events.000010.jsonl.gz",
        ]
    
    def test_status_latest(self, store):
        """Status without a name reports the latest segment."""
        store.append(make_event(0))
        
        status = store.status()
        
        assert status.name == "events.000001.jsonl.gz"
        assert status.is_latest
        assert status.line_count == 1
        assert status.compressed_size > 0
        assert status.first_line_hash
        assert set(status.to_dict()) == {
            "name", "compressed_size", "uncompressed_size",
            "line_count", "first_line_hash", "is_latest",
        }
    
    def test_status_sealed_segment(self, store, temp_dir):
        """Sealed segments are not latest."""
        store.append(make_event(0))
        store._rotate(store.segment("events.000001.jsonl.gz"))
        
        assert not store.status("events.000001.jsonl.gz").is_latest
        assert store.status().name == "events.000002.jsonl.gz"
    
    def test_status_not_found(self, store):
        """Unknown or invalid segment names are NotFound."""
        with pytest.raises(NotFoundError):
            store.status("events.000042.jsonl.gz")
        with pytest.raises(NotFoundError):
            store.status("latest")
    
    def test_non_canonical_name_not_found(self, store):
        """Names that only differ in sequence padding do not alias a segment."""
        store.append(make_event(0))
        
        for name in ("events.1.jsonl.gz", "events.0000001.jsonl.gz"):
            with pytest.raises(NotFoundError):
                store.status(name)
            with pytest.raises(NotFoundError):
                store.segment(name)
            with pytest.raises(NotFoundError):
                store.read_from(name, 0)
    
    def test_latest_not_recorded(self, temp_dir):
        """An uninitialized directory has no latest segment."""
        store = SegmentStore(temp_dir)
        
        assert store.list_files() == []
        with pytest.raises(NotFoundError):
            store.latest_name()
    
    def test_missing_pointer_uses_highest_segment(self, store, temp_dir):
        """A lost latest pointer is recovered from the highest segment."""
        store._rotate(store.segment("events.000001.jsonl.gz"))
        (temp_dir / LATEST_FILE_NAME).unlink()
        
        position = store.append(make_event(0))
        
        assert position.file == "events.000002.jsonl.gz"
        assert store.list_files() == ["events.000001.jsonl.gz", "events.000002.jsonl.gz"]
    
    def test_pointer_to_missing_segment_creates_next(self, store, temp_dir):
        """A pointer naming a deleted segment never reuses its number."""
        store._rotate(store.segment("events.000001.jsonl.gz"))
        (temp_dir / "events.000002.jsonl.gz").unlink()
        (temp_dir / "events.000002.meta.json").unlink()
        
        position = store.append(make_event(0))
        
        assert position.file == "events.000003.jsonl.gz"
        assert store.latest_name() == "events.000003.jsonl.gz"
    
    def test_sequence_never_reused(self, store, temp_dir):
        """Rotation picks a number above every existing segment."""
        LogSegment(temp_dir, 7).create()
        
        rotated = store._rotate(store.segment("events.000001.jsonl.gz"))
        
        assert rotated.name == "events.000008.jsonl.gz"
    
    def test_metadata_sidecar_matches_status(self, store, temp_dir):
        """The sidecar holds the same numbers status reports."""
        store.append(make_event(0))
        
        data = json.loads((temp_dir / "events.000001.meta.json").read_text())
        status = store.status()
        
        assert data["uncompressed_size"] == status.uncompressed_size
        assert data["line_count"] == status.line_count
        assert data["first_line_hash"] == status.first_line_hash
        assert data["compressed_size"] == status.compressed_size
