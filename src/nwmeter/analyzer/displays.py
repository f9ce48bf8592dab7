"""
Rich display builders for meter output.
"""

from typing import Iterable, List, Optional

from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..models.buffs import BuffInstance
from ..models.combatant import Combatant
from ..models.encounter import Encounter, format_duration
from ..models.players import PlayerIdentity
from .metrics import MetricsCalculator


def format_number(value: float) -> str:
    """
    Compact number for tables.

    >>> format_number(1234567)
    '1.23M'
    >>> format_number(950)
    '950'
    """
    if value >= 1_000_000:
        return f"{value / 1_000_000:.2f}M"
    if value >= 10_000:
        return f"{value / 1_000:.1f}K"
    return f"{value:.0f}"


class DisplayBuilder:
    """Builds rich tables and panels for the CLI."""

    @staticmethod
    def create_encounters_table(encounters: Iterable[Encounter]) -> Table:
        table = Table(title="Encounters", show_header=True, header_style="bold magenta")
        table.add_column("#", justify="right", width=4)
        table.add_column("Target", style="cyan")
        table.add_column("Duration", justify="right")
        table.add_column("Damage", justify="right", style="red")
        table.add_column("DPS", justify="right", style="yellow")
        table.add_column("Combatants", justify="right")

        for encounter in encounters:
            table.add_row(
                str(encounter.encounter_id),
                encounter.most_damaged_participant or "Unknown",
                format_duration(encounter.elapsed),
                format_number(encounter.total_damage),
                f"{encounter.dps():.1f}",
                str(len(encounter.combatants)),
            )
        return table

    @staticmethod
    def create_combatant_table(
        combatants: Iterable[Combatant], title: str, elapsed: Optional[float] = None, limit: int = 15
    ) -> Table:
        table = Table(title=title, show_header=True, header_style="bold magenta")
        table.add_column("Name", style="cyan")
        table.add_column("Damage", justify="right", style="red")
        table.add_column("DPS", justify="right", style="yellow")
        table.add_column("Hit %", justify="right")
        table.add_column("Crit %", justify="right")
        table.add_column("Taken", justify="right")
        table.add_column("Spells", justify="right")

        rankings = MetricsCalculator.get_dps_rankings(combatants, elapsed)
        for name, dps, combatant in rankings[:limit]:
            label = Text(name, style="bold green" if combatant.is_player else "white")
            table.add_row(
                label,
                format_number(combatant.total_damage_done),
                f"{dps:.1f}",
                f"{combatant.hit_rate * 100:.0f}%",
                f"{combatant.critical_rate * 100:.0f}%",
                format_number(combatant.total_damage_taken),
                str(combatant.total_spells_cast),
            )
        return table

    @staticmethod
    def create_encounter_panel(encounter: Encounter, active: bool = True) -> Panel:
        table = DisplayBuilder.create_combatant_table(
            encounter.combatants.values(), title="Damage", elapsed=encounter.elapsed
        )
        state = "[green]in combat[/green]" if active else "[dim]ended[/dim]"
        return Panel(table, title=f"{escape(encounter.display_name)} {state}", border_style="cyan")

    @staticmethod
    def create_buff_table(buffs: List[BuffInstance], now: float, warning_seconds: float) -> Table:
        table = Table(title="Buffs", show_header=True, header_style="bold magenta")
        table.add_column("Player", style="cyan")
        table.add_column("Spell")
        table.add_column("Remaining", justify="right")

        for buff in buffs:
            remaining = buff.remaining(now)
            style = "bold red" if buff.is_expiring(now, warning_seconds) else "green"
            table.add_row(buff.player, buff.spell_name, Text(format_duration(remaining), style=style))
        return table

    @staticmethod
    def create_players_table(players: Iterable[PlayerIdentity], main: Optional[PlayerIdentity] = None) -> Table:
        table = Table(title="Players", show_header=True, header_style="bold magenta")
        table.add_column("Account", style="cyan")
        table.add_column("Character")
        table.add_column("Main", justify="center")

        main_account = main.account_name if main else None
        for identity in players:
            table.add_row(
                identity.account_name,
                identity.character_name or "-",
                "*" if identity.account_name == main_account else "",
            )
        return table
