"""
Tests for the meter processor: backfill, live tailing and snapshots.
"""

import time

import pytest

from nwmeter.config.settings import BuffSettings, MeterSettings
from nwmeter.streaming.processor import MeterProcessor
from nwmeter.streaming.watcher import LogWatcher

# 14:10:00 as seconds of day
T0 = 14 * 3600 + 10 * 60


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def state_of(processor, now):
    processor.finalize()
    snapshot = processor.snapshot(now=now).to_dict()
    totals = {name: c.to_dict() for name, c in processor.session_totals().items()}
    return snapshot, totals


class TestBackfill:
    """Test reading a whole log file."""

    def test_sample_session(self, processor, write_log, sample_log_lines):
        processor.backfill(write_log(sample_log_lines))

        historical = processor.historical_encounters()
        assert len(historical) == 1
        assert historical[0].start_time == T0 + 5
        assert historical[0].end_time == T0 + 8
        assert historical[0].total_damage == 27 + 1054

        current = processor.current_encounter()
        assert current.start_time == T0 + 20
        assert current.combatants["Goblin Archer"].total_absorbed == 5

        main = processor.main_player()
        assert (main.account_name, main.character_name) == ("Alice", "Thorin")
        assert processor.active_buffs() == []

        stats = processor.get_stats()
        assert stats["lines_processed"] == len(sample_log_lines)
        assert stats["unrecognized"] == 0
        assert stats["events_by_type"]["damage"] == 3

    def test_clock_is_last_event_time(self, processor, write_log, sample_log_lines):
        processor.backfill(write_log(sample_log_lines))
        assert processor.now() == T0 + 30

    def test_missing_file(self, processor, tmp_path):
        with pytest.raises(FileNotFoundError):
            processor.backfill(tmp_path / "absent.txt")

    def test_backfill_matches_line_by_line(self, write_log, sample_log_lines):
        backfilled = MeterProcessor()
        backfilled.backfill(write_log(sample_log_lines))

        incremental = MeterProcessor()
        for line in sample_log_lines:
            incremental.process_line(line)

        now = T0 + 60
        assert state_of(backfilled, now) == state_of(incremental, now)

    def test_backfill_matches_tailing_with_split_writes(self, tmp_path, write_log, sample_log_lines):
        backfilled = MeterProcessor()
        backfilled.backfill(write_log(sample_log_lines, name="full.txt"))

        path = tmp_path / "live.txt"
        path.write_bytes(b"")
        tailed = MeterProcessor()
        watcher = LogWatcher(path)
        watcher.attach()
        for line in sample_log_lines:
            data = (line + "\n").encode("utf-8")
            middle = len(data) // 2
            for piece in (data[:middle], data[middle:]):
                with open(path, "ab") as f:
                    f.write(piece)
                tailed.process_lines(watcher.poll())

        now = T0 + 60
        assert state_of(backfilled, now) == state_of(tailed, now)


class TestProcessing:
    """Test event routing between components."""

    def test_buff_active_before_rest(self, processor, sample_log_lines):
        processor.process_lines(sample_log_lines[:3])

        buffs = processor.active_buffs("Thorin")
        assert [b.spell_name for b in buffs] == ["Divine Might"]
        assert buffs[0].expires_at == T0 + 5 + 10

    def test_configured_caster_attributes(self, sample_log_lines):
        settings = MeterSettings(buffs=BuffSettings(charisma_modifier=5, extended_divine_might=True))
        processor = MeterProcessor(settings)
        processor.process_lines(sample_log_lines[:3])

        assert processor.active_buffs()[0].expires_at == T0 + 5 + 120

    def test_character_switch_clears_old_buffs(self, processor, make_line):
        processor.process_lines([
            make_line("20:00:00", "[Alice] Thorin: [Talk] hi"),
            make_line("20:00:01", "Thorin casts Divine Favor"),
            make_line("20:00:30", "[Alice] Brom: [Talk] switched"),
        ])
        assert processor.active_buffs() == []

        processor.process_line(make_line("20:00:31", "Brom casts Divine Favor"))
        assert [b.player for b in processor.active_buffs()] == ["Brom"]

    def test_npc_talk_does_not_become_main_character(self, processor, make_line):
        processor.process_lines([
            make_line("20:00:00", "Alice has joined as a player.."),
            make_line("20:00:01", "Innkeeper: [Talk] Welcome to the Moonstone Mask"),
            make_line("20:00:02", "Innkeeper casts Divine Favor"),
        ])

        main = processor.main_player()
        assert (main.account_name, main.character_name) == ("Alice", None)
        assert processor.active_buffs() == []

    def test_other_players_buffs_not_tracked(self, processor, make_line):
        processor.process_lines([
            make_line("20:00:00", "[Alice] Thorin: [Talk] hi"),
            make_line("20:00:01", "[Bob] Brom: [Talk] hi"),
            make_line("20:00:02", "Brom casts Divine Favor"),
        ])
        assert processor.active_buffs() == []

    def test_track_all_players(self, make_line):
        settings = MeterSettings(buffs=BuffSettings(track_all_players=True))
        processor = MeterProcessor(settings)
        processor.process_lines([
            make_line("20:00:00", "[Alice] Thorin: [Talk] hi"),
            make_line("20:00:01", "[Bob] Brom: [Talk] hi"),
            make_line("20:00:02", "Brom casts Divine Favor"),
        ])
        assert [b.player for b in processor.active_buffs()] == ["Brom"]

    def test_batches(self, make_line):
        settings = MeterSettings()
        settings.watcher.max_lines_per_batch = 2
        processor = MeterProcessor(settings)
        lines = [make_line(f"20:00:0{i}", "Thorin attacks Goblin : *hit*") for i in range(5)]

        assert processor.process_lines(lines) == 5
        assert processor.get_stats()["lines_processed"] == 5
        assert processor.current_encounter().combatants["Thorin"].hits == 5

    def test_unrecognized_lines_are_counted(self, processor, make_line):
        processor.process_lines([make_line("20:00:00", "You are now in a Party PVP area.")])
        assert processor.get_stats()["unrecognized"] == 1
        assert processor.current_encounter() is None


class TestSnapshots:
    """Test that readers get consistent, independent copies."""

    def test_snapshot_is_independent(self, processor, make_line):
        processor.process_line(make_line("20:00:00", "Thorin attacks Goblin : *hit*"))
        snapshot = processor.snapshot()

        processor.process_line(make_line("20:00:01", "Thorin attacks Goblin : *hit*"))

        assert snapshot.current_encounter.combatants["Thorin"].hits == 1
        assert processor.current_encounter().combatants["Thorin"].hits == 2

    def test_snapshot_contents(self, processor, write_log, sample_log_lines):
        processor.backfill(write_log(sample_log_lines))
        snapshot = processor.snapshot()

        assert snapshot.taken_at == T0 + 30
        assert len(snapshot.historical_encounters()) == 1
        assert snapshot.current_encounter is not None
        assert not snapshot.encounter_active
        assert snapshot.main_player.display_name == "[Alice] Thorin"
        assert [p.account_name for p in snapshot.players] == ["Alice"]
        assert snapshot.active_buffs() == []

    def test_snapshot_reports_expiring_buffs(self, processor, sample_log_lines):
        processor.process_lines(sample_log_lines[:3])

        snapshot = processor.snapshot(now=T0 + 6)
        assert [b.spell_name for b in snapshot.expiring_buffs()] == ["Divine Might"]
        assert snapshot.to_dict()["buffs"][0]["remaining"] == 9.0


@pytest.mark.integration
class TestLiveWatching:
    """Test the background watcher feeding the processor."""

    def test_watch_starts_at_end(self, fast_settings, write_log, sample_log_lines, make_line):
        path = write_log(sample_log_lines)
        processor = MeterProcessor(fast_settings)
        processor.watch(path)
        try:
            assert processor.live
            with open(path, "a", encoding="utf-8") as f:
                f.write(make_line("14:11:00", "Thorin attacks Goblin : *hit*") + "\n")
            assert wait_for(lambda: processor.get_stats()["lines_processed"] == 1)
        finally:
            processor.stop()

        assert not processor.live

    def test_watch_with_backfill(self, fast_settings, write_log, sample_log_lines, make_line):
        path = write_log(sample_log_lines)
        processor = MeterProcessor(fast_settings)
        processor.watch(path, backfill=True)
        try:
            assert processor.get_stats()["lines_processed"] == len(sample_log_lines)
            with open(path, "a", encoding="utf-8") as f:
                f.write(make_line("14:11:00", "Thorin attacks Goblin : *hit*") + "\n")
            assert wait_for(
                lambda: processor.get_stats()["lines_processed"] == len(sample_log_lines) + 1
            )
            assert processor.now() >= T0 + 60
        finally:
            processor.stop()

    def test_rotation_does_not_replay(self, processor, write_log, sample_log_lines, make_line):
        path = write_log(sample_log_lines)
        watcher = processor.backfill(path)

        path.write_text(make_line("15:00:00", "Thorin attacks Goblin : *hit*") + "\n")
        processor.process_lines(watcher.poll())

        stats = processor.get_stats()
        assert stats["lines_processed"] == len(sample_log_lines) + 1
        assert stats["rotations"] == 1
        assert processor.now() == 15 * 3600
