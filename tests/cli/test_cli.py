"""Tests for the command line interface."""

import json
import tempfile
from pathlib import Path

import pytest

from eventbus import EventBus
from eventbus.cli import main as cli
from eventbus.cli.main import format_size, main


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep the CLI from reconfiguring logging onto captured streams."""
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: None)
    for name in ("EVENTBUS_DIR", "EVENTBUS_MAX_SEGMENT_SIZE", "LOG_LEVEL", "LOG_FORMAT"):
        monkeypatch.delenv(name, raising=False)


class TestFormatSize:
    """Test human readable sizes."""
    
    @pytest.mark.parametrize(
        "size,expected",
        [(0, "0 B"), (1023, "1023 B"), (1536, "1.5 KB"), (5 * 1024 * 1024, "5.0 MB")],
    )
    def test_format_size(self, size, expected):
        assert format_size(size) == expected


class TestCli:
    """Test CLI commands end to end."""
    
    @pytest.fixture
    def temp_dir(self):
        """Create a temporary directory for tests."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir) / "events"
    
    def run(self, temp_dir, *args):
        return main(["--dir", str(temp_dir), *args])
    
    def test_add(self, temp_dir, capsys):
        """Add publishes an event and echoes it."""
        code = self.run(
            temp_dir, "add", "-t", "email.received", "-c", "inbox",
            "-p", '{"from": "a@b.com"}',
        )
        
        out = capsys.readouterr().out
        assert code == 0
        assert "Event published:" in out
        assert "email.received" in out
        assert '{"from": "a@b.com"}' in out
        
        entries = EventBus(temp_dir).list("reader")
        assert entries[0].event.payload == {"from": "a@b.com"}
    
    def test_add_without_payload(self, temp_dir, capsys):
        """The payload is optional."""
        assert self.run(temp_dir, "add", "-t", "ping", "-c", "system") == 0
        
        assert EventBus(temp_dir).list("reader")[0].event.payload is None
    
    def test_add_invalid_payload(self, temp_dir, capsys):
        """Invalid JSON payloads are reported and nothing is written."""
        code = self.run(temp_dir, "add", "-t", "ping", "-c", "system", "-p", "{nope")
        
        assert code == 1
        assert "Invalid JSON payload" in capsys.readouterr().err
        assert EventBus(temp_dir).list("reader") == []
    
    def test_add_requires_type(self, temp_dir):
        """Missing required options are usage errors."""
        with pytest.raises(SystemExit) as exc_info:
            self.run(temp_dir, "add", "-c", "system")
        
        assert exc_info.value.code == 2
    
    def test_ls_empty(self, temp_dir, capsys):
        """Listing with nothing new says so."""
        assert self.run(temp_dir, "ls", "-c", "reader") == 0
        
        assert "no new events" in capsys.readouterr().out
    
    def test_ls_and_mark(self, temp_dir, capsys):
        """The hinted position can be passed to mark."""
        for i in range(3):
            self.run(temp_dir, "add", "-t", "tick", "-c", "clock", "-p", str(i))
        capsys.readouterr()
        
        assert self.run(temp_dir, "list", "-c", "reader", "-n", "2") == 0
        out = capsys.readouterr().out
        
        assert "Latest position:" in out
        position = out.split("Latest position:")[1].split()[0]
        
        assert self.run(temp_dir, "mark", "-c", "reader", position) == 0
        assert f"Marker updated: reader -> {position}" in capsys.readouterr().out
        
        entries = EventBus(temp_dir).list("reader")
        assert [e.event.payload for e in entries] == [2]
    
    def test_ls_truncates_long_payloads(self, temp_dir, capsys):
        """Long payloads are shortened in the table."""
        payload = json.dumps({"body": "x" * 200})
        self.run(temp_dir, "add", "-t", "note", "-c", "notes", "-p", payload)
        capsys.readouterr()
        
        self.run(temp_dir, "ls", "-c", "reader")
        out = capsys.readouterr().out
        
        assert "..." in out
        assert "x" * 200 not in out
    
    def test_mark_invalid_position(self, temp_dir, capsys):
        """A position without an offset is rejected."""
        code = self.run(temp_dir, "mark", "-c", "reader", "events.000001.jsonl.gz")
        
        assert code == 1
        assert "Invalid position" in capsys.readouterr().err
    
    def test_mark_unknown_segment(self, temp_dir, capsys):
        """Marking a segment that does not exist is not found."""
        code = self.run(temp_dir, "mark", "-c", "reader", "events.000042.jsonl.gz:0")
        
        assert code == 1
        assert "Error: not found:" in capsys.readouterr().err
    
    def test_status(self, temp_dir, capsys):
        """Status shows the latest segment and channel markers."""
        self.run(temp_dir, "add", "-t", "tick", "-c", "clock", "-p", "1")
        bus = EventBus(temp_dir)
        bus.mark("reader", bus.list("reader")[0].position)
        capsys.readouterr()
        
        assert self.run(temp_dir, "status") == 0
        out = capsys.readouterr().out
        
        assert "events.000001.jsonl.gz (latest)" in out
        assert "Lines:        1" in out
        assert "Channel markers:" in out
        assert "reader" in out
    
    def test_status_unknown_segment(self, temp_dir, capsys):
        """Status of a missing segment fails."""
        self.run(temp_dir, "ls", "-c", "reader")
        capsys.readouterr()
        
        assert self.run(temp_dir, "status", "events.000009.jsonl.gz") == 1
        assert "Error: not found:" in capsys.readouterr().err
    
    def test_channels(self, temp_dir, capsys):
        """Channels lists every channel with a marker, sorted."""
        self.run(temp_dir, "add", "-t", "tick", "-c", "clock", "-p", "1")
        bus = EventBus(temp_dir)
        position = bus.list("x")[0].position
        for channel in ("zeta", "alpha"):
            bus.mark(channel, position)
        capsys.readouterr()
        
        assert self.run(temp_dir, "channels") == 0
        
        assert capsys.readouterr().out.splitlines() == ["alpha", "zeta"]
    
    def test_config_file(self, temp_dir, capsys):
        """The directory can come from a configuration file."""
        config = temp_dir.parent / "eventbus.yaml"
        config.write_text(f"bus:\n  dir: {temp_dir}\n")
        
        assert main(["--config", str(config), "add", "-t", "ping", "-c", "system"]) == 0
        
        assert EventBus(temp_dir).status().line_count == 1
