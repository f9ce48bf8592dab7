"""Encounter segmentation and damage attribution."""

from .attribution import Attribution, DamageAttributor, split_summon
from .encounters import EncounterAggregator

__all__ = ["Attribution", "DamageAttributor", "split_summon", "EncounterAggregator"]
