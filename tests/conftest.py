"""
Pytest configuration and shared fixtures for the test suite.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from nwmeter.config.settings import MeterSettings  # noqa: E402
from nwmeter.streaming.processor import MeterProcessor  # noqa: E402


def chat_line(clock: str, payload: str) -> str:
    """Format a payload the way the game client writes it."""
    return f"[CHAT WINDOW TEXT] [Tue Jul 29 {clock}] {payload}"


@pytest.fixture
def make_line():
    """Factory for timestamped log lines."""
    return chat_line


@pytest.fixture
def sample_log_lines():
    """A short session: login, one fight, a pause, a second fight, rest."""
    return [
        chat_line("14:10:00", "Alice has joined as a player.."),
        chat_line("14:10:02", "[Alice] Thorin: [Talk] ready when you are"),
        chat_line("14:10:05", "Thorin casts Divine Might"),
        chat_line("14:10:06", "Thorin attacks Goblin Chieftain : *hit* : (14 + 22 = 36)"),
        chat_line("14:10:06", "Thorin damages Goblin Chieftain: 27 (20 Physical 7 Divine)"),
        chat_line("14:10:07", "Goblin Chieftain attacks Thorin : *miss* : (1 + 8 = 9)"),
        chat_line(
            "14:10:08",
            "Thorin attacks Goblin Chieftain : *critical hit* : "
            "(19 + 22 = 41 : Threat Roll: 12 + 22 = 34)",
        ),
        chat_line("14:10:08", "Thorin damages Goblin Chieftain: 1,054 (1,040 Physical 14 Divine)"),
        chat_line("14:10:09", "Thorin : [Party] that was easy"),
        chat_line("14:10:20", "Thorin attacks Goblin Archer : *target concealed: 50%* : (14 + 22 = 36)"),
        chat_line("14:10:21", "Thorin attacks Goblin Archer : *hit* : (15 + 22 = 37)"),
        chat_line("14:10:21", "Thorin damages Goblin Archer: 30 (30 Physical)"),
        chat_line("14:10:22", "Goblin Archer : Damage Resistance absorbs 5 damage"),
        chat_line("14:10:30", "Resting."),
    ]


@pytest.fixture
def write_log(tmp_path):
    """Write lines to a log file and return its path."""

    def _write(lines, name="nwclientLog1.txt"):
        path = tmp_path / name
        path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def fast_settings():
    """Settings with short polling intervals for thread tests."""
    settings = MeterSettings()
    settings.watcher.poll_interval = 0.01
    settings.watcher.max_backoff = 0.05
    return settings


@pytest.fixture
def processor():
    return MeterProcessor()


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
