"""
Tests for encounter segmentation, attribution and aggregation.
"""

import pytest

from nwmeter.models.encounter import Encounter, format_duration
from nwmeter.parser.events import (
    AbsorbKind,
    Attack,
    AttackOutcome,
    ChatMessage,
    Damage,
    DamageAbsorbed,
    RestEvent,
    SavingThrow,
    SpellCast,
    SpellResist,
)
from nwmeter.parser.parser import EventParser
from nwmeter.segmentation.attribution import split_summon
from nwmeter.segmentation.encounters import EncounterAggregator


def hit(attacker="Thorin", defender="Goblin", outcome=AttackOutcome.HIT):
    return Attack(attacker, defender, outcome)


def damage(source="Thorin", target="Goblin", amount=10, damage_type="Physical"):
    return Damage(source, target, amount, {damage_type: amount})


@pytest.fixture
def aggregator():
    return EncounterAggregator(gap_seconds=6.0, is_player=lambda name: name == "Thorin")


class TestSegmentation:
    """Test where encounters start and end."""

    def test_events_within_gap_share_encounter(self, aggregator):
        aggregator.ingest(hit(), 0.0)
        aggregator.ingest(hit(), 5.0)

        assert aggregator.historical_encounters() == ()
        assert aggregator.current_encounter.event_count == 2

    def test_exact_gap_does_not_close(self, aggregator):
        aggregator.ingest(hit(), 0.0)
        assert aggregator.ingest(hit(), 6.0) is None
        assert aggregator.current_encounter.elapsed == 6.0

    def test_longer_gap_closes(self, aggregator):
        aggregator.ingest(hit(), 0.0)
        closed = aggregator.ingest(hit(), 7.0)

        assert closed.encounter_id == 1
        assert closed.end_time == 0.0
        assert aggregator.current_encounter.encounter_id == 2
        assert aggregator.current_encounter.start_time == 7.0

    def test_chat_does_not_open_encounter(self, aggregator):
        aggregator.ingest(ChatMessage("Alice", "Thorin", "hello", "Talk"), 0.0)
        assert aggregator.current_encounter is None

    def test_chat_does_not_extend_encounter(self, aggregator):
        aggregator.ingest(hit(), 0.0)
        aggregator.ingest(ChatMessage("Alice", "Thorin", "hello", "Talk"), 5.0)
        closed = aggregator.ingest(hit(), 10.0)

        assert closed is not None
        assert closed.last_combat_time == 0.0

    def test_rest_does_not_close_encounter(self, aggregator):
        aggregator.ingest(hit(), 0.0)
        aggregator.ingest(RestEvent(), 2.0)
        aggregator.ingest(hit(), 4.0)

        assert aggregator.historical_encounters() == ()
        assert aggregator.current_encounter.event_count == 2

    def test_close_if_idle(self, aggregator):
        aggregator.ingest(hit(), 0.0)

        assert aggregator.close_if_idle(6.0) is None
        closed = aggregator.close_if_idle(6.5)
        assert closed.encounter_id == 1
        assert aggregator.current_encounter is None

    def test_finalize(self, aggregator):
        aggregator.ingest(hit(), 0.0)
        aggregator.ingest(hit(), 20.0)

        history = aggregator.finalize()
        assert [e.encounter_id for e in history] == [1, 2]
        assert all(not e.is_active for e in history)

    def test_closed_encounter_is_not_modified(self, aggregator):
        aggregator.ingest(hit(), 0.0)
        aggregator.ingest(damage(amount=50), 0.5)
        first = aggregator.ingest(hit(), 20.0)
        before = first.to_dict()

        aggregator.ingest(damage(amount=99), 20.5)
        aggregator.finalize()

        assert aggregator.encounter(0).to_dict() == before


class TestAggregation:
    """Test per-combatant tallies."""

    def test_dps(self, aggregator):
        aggregator.ingest(hit(), 0.0)
        aggregator.ingest(damage(amount=1000), 0.0)
        aggregator.ingest(hit(outcome=AttackOutcome.MISS), 5.0)
        aggregator.ingest(hit(outcome=AttackOutcome.MISS), 10.0)
        encounter = aggregator.finalize()[0]

        assert encounter.elapsed == 10.0
        assert encounter.dps() == pytest.approx(100.0)
        assert encounter.combatant_dps("Thorin") == pytest.approx(100.0)

    def test_single_timestamp_encounter_counts_as_one_second(self, aggregator):
        aggregator.ingest(hit(), 0.0)
        aggregator.ingest(damage(amount=50), 0.0)

        encounter = aggregator.current_encounter
        assert encounter.elapsed == 0.0
        assert encounter.dps() == pytest.approx(50.0)
        assert encounter.combatant_dps("Thorin") == pytest.approx(50.0)

    def test_short_encounter_dps_uses_one_second_floor(self, aggregator):
        aggregator.ingest(hit(), 0.0)
        aggregator.ingest(damage(amount=30), 0.5)

        assert aggregator.current_encounter.dps() == pytest.approx(30.0)

    def test_attack_outcomes(self, aggregator):
        aggregator.ingest(hit(), 0.0)
        aggregator.ingest(hit(outcome=AttackOutcome.CRITICAL_HIT), 1.0)
        aggregator.ingest(hit(outcome=AttackOutcome.MISS), 2.0)
        aggregator.ingest(hit(outcome=AttackOutcome.AUTO_MISS), 3.0)
        aggregator.ingest(Attack("Thorin", "Goblin", AttackOutcome.MISS, concealment=50), 4.0)

        thorin = aggregator.current_encounter.combatants["Thorin"]
        goblin = aggregator.current_encounter.combatants["Goblin"]
        assert (thorin.hits, thorin.critical_hits, thorin.misses, thorin.auto_misses) == (1, 1, 2, 1)
        assert thorin.concealment_misses == 1
        assert goblin.times_attacked == 5
        assert goblin.times_hit == 2
        assert thorin.hit_rate == pytest.approx(0.4)

    def test_critical_damage_attribution(self, aggregator):
        aggregator.ingest(hit(outcome=AttackOutcome.CRITICAL_HIT), 0.0)
        aggregator.ingest(damage(amount=40), 0.5)
        aggregator.ingest(hit(), 1.0)
        aggregator.ingest(damage(amount=15), 1.5)

        thorin = aggregator.current_encounter.combatants["Thorin"]
        assert thorin.critical_damage == 40
        assert thorin.hit_damage == 15
        assert thorin.damage_done_by_source == {"Attack": 55}

    def test_spell_damage_attribution(self, aggregator):
        aggregator.ingest(SpellCast("Mira", "Fireball"), 0.0)
        aggregator.ingest(SpellResist("Goblin", "Fireball", resisted=False), 1.0)
        aggregator.ingest(damage("Mira", "Goblin", 20, "Fire"), 1.5)

        mira = aggregator.current_encounter.combatants["Mira"]
        assert mira.damage_done_by_source == {"Spell: Fireball": 20}
        assert mira.damage_done == {"Fire": 20}
        assert mira.spells_cast == {"Fireball": 1}

    def test_missile_storm_credits_every_missile(self, aggregator):
        """Each missile is its own damage line after a single resist check."""
        storm = "Isaac's Greater Missile Storm"
        aggregator.ingest(SpellResist("Goblin", storm, resisted=False), 0.0)
        aggregator.ingest(damage("Mira", "Goblin", 10, "Magical"), 0.5)
        aggregator.ingest(damage("Mira", "Goblin", 10, "Magical"), 1.0)
        aggregator.ingest(damage("Mira", "Goblin", 10, "Magical"), 4.0)

        mira = aggregator.current_encounter.combatants["Mira"]
        assert mira.damage_done_by_source == {f"Spell: {storm}": 30}

    def test_missile_spell_ignores_other_damage_types(self, aggregator):
        aggregator.ingest(SpellResist("Goblin", "Flame Arrow", resisted=False), 0.0)
        aggregator.ingest(damage("Mira", "Goblin", 8, "Physical"), 0.5)
        aggregator.ingest(
            Damage("Mira", "Goblin", 12, {"Fire": 6, "Magical": 6}), 1.0
        )
        aggregator.ingest(damage("Mira", "Goblin", 9, "Fire"), 1.5)

        mira = aggregator.current_encounter.combatants["Mira"]
        assert mira.damage_done_by_source == {"Unknown": 20, "Spell: Flame Arrow": 9}

    def test_missile_spell_keeps_first_caster(self, aggregator):
        aggregator.ingest(SpellResist("Goblin", "Magic Missile", resisted=False), 0.0)
        aggregator.ingest(damage("Mira", "Goblin", 4, "Magical"), 0.5)
        aggregator.ingest(damage("Brom", "Goblin", 5, "Magical"), 1.0)

        encounter = aggregator.current_encounter
        assert encounter.combatants["Mira"].damage_done_by_source == {"Spell: Magic Missile": 4}
        assert encounter.combatants["Brom"].damage_done_by_source == {"Unknown": 5}

    def test_missile_context_expires_after_six_seconds(self, aggregator):
        aggregator.ingest(SpellResist("Goblin", "Ball Lightning", resisted=False), 0.0)
        aggregator.ingest(damage("Mira", "Goblin", 7, "Electrical"), 4.0)
        aggregator.ingest(damage("Mira", "Goblin", 7, "Electrical"), 6.5)

        mira = aggregator.current_encounter.combatants["Mira"]
        assert mira.damage_done_by_source == {"Spell: Ball Lightning": 7, "Unknown": 7}

    def test_parsed_damage_is_not_critical_until_attributed(self, aggregator):
        """Critical credit comes from the preceding attack, not the damage text."""
        line = EventParser().parse("Thorin damages Goblin: 40 (40 Physical)")
        assert not line.is_critical

        aggregator.ingest(hit(outcome=AttackOutcome.CRITICAL_HIT), 0.0)
        aggregator.ingest(line, 0.5)
        assert aggregator.current_encounter.combatants["Thorin"].critical_damage == 40

    def test_unmatched_damage_is_unknown(self, aggregator):
        aggregator.ingest(damage("Trap", "Thorin", 8), 0.0)

        trap = aggregator.current_encounter.combatants["Trap"]
        assert trap.damage_done_by_source == {"Unknown": 8}
        assert aggregator.current_encounter.combatants["Thorin"].damage_taken_by_attacker == {
            "Trap": 8
        }

    def test_summon_damage_credited_to_owner(self, aggregator):
        aggregator.ingest(hit("Thorin | Badger", "Goblin"), 0.0)
        aggregator.ingest(damage("Thorin | Badger", "Goblin", 12), 0.5)

        encounter = aggregator.current_encounter
        assert encounter.combatants["Thorin"].total_damage_done == 12
        assert encounter.combatants["Thorin"].is_player
        assert encounter.combatants["Goblin"].damage_taken_by_attacker == {"Thorin": 12}

    def test_resists_and_saves(self, aggregator):
        aggregator.ingest(SpellCast("Mira", "Hold Person"), 0.0)
        aggregator.ingest(SpellResist("Goblin", "Hold Person", resisted=True), 0.5)
        aggregator.ingest(SavingThrow("Goblin", "Will", success=False), 1.0)
        aggregator.ingest(SavingThrow("Goblin", "Reflex", success=True), 2.0)

        encounter = aggregator.current_encounter
        goblin = encounter.combatants["Goblin"]
        assert goblin.spells_resisted == 1
        assert (goblin.saves_made, goblin.saves_failed) == (1, 1)
        assert encounter.combatants["Mira"].enemy_resists == 1

    def test_absorbed_damage(self, aggregator):
        aggregator.ingest(DamageAbsorbed("Goblin", 5, AbsorbKind.DAMAGE_RESISTANCE, "Fire"), 0.0)
        goblin = aggregator.current_encounter.combatants["Goblin"]
        assert goblin.damage_absorbed == {"Damage Resistance": 5}

    def test_player_flag(self, aggregator):
        aggregator.ingest(hit(), 0.0)
        encounter = aggregator.current_encounter
        assert encounter.combatants["Thorin"].is_player
        assert not encounter.combatants["Goblin"].is_player

    def test_session_totals_are_additive(self, aggregator):
        aggregator.ingest(hit(), 0.0)
        aggregator.ingest(damage(amount=30), 0.5)
        aggregator.ingest(hit(), 20.0)
        aggregator.ingest(damage(amount=12), 20.5)
        history = aggregator.finalize()

        totals = aggregator.session_totals()
        per_encounter = sum(e.combatants["Thorin"].total_damage_done for e in history)
        assert totals["Thorin"].total_damage_done == per_encounter == 42
        assert totals["Thorin"].hits == 2

    def test_session_totals_include_current(self, aggregator):
        aggregator.ingest(hit(), 0.0)
        aggregator.ingest(damage(amount=30), 0.5)

        assert aggregator.session_totals() == {}
        totals = aggregator.session_totals(include_current=True)
        assert totals["Thorin"].total_damage_done == 30


class TestEncounterModel:
    """Test encounter naming and helpers."""

    def test_display_name(self, aggregator):
        aggregator.ingest(hit(), 0.0)
        aggregator.ingest(damage(amount=27), 0.0)
        aggregator.ingest(hit(outcome=AttackOutcome.MISS), 5.0)
        aggregator.ingest(hit(outcome=AttackOutcome.MISS), 10.0)

        assert aggregator.current_encounter.display_name == "#1 [10s] Goblin"

    def test_display_name_without_target(self):
        encounter = Encounter(encounter_id=3, start_time=0.0)
        assert encounter.display_name == "#3 [0s] Unknown"

    def test_format_duration(self):
        assert format_duration(42) == "[42s]"
        assert format_duration(125) == "[2m:05s]"

    def test_split_summon(self):
        assert split_summon("Thorin | Badger") == ("Thorin", "Badger")
        assert split_summon("Goblin") == ("Goblin", None)

    def test_merge_rejects_other_name(self, aggregator):
        aggregator.ingest(hit(), 0.0)
        combatants = aggregator.current_encounter.combatants
        with pytest.raises(ValueError):
            combatants["Thorin"].merge(combatants["Goblin"])
