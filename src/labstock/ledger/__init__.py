"""Batch ledger, unit-consumption tracker, FEFO allocator and movement log."""
