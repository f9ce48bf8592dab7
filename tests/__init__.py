"""
Tests for the combat meter.

Covers parsing, the player registry, buff tracking, encounter
aggregation, the log watcher, and the processing pipeline.
"""
