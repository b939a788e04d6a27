"""LabStock: consumable inventory ledger for laboratory stock."""

__version__ = "0.1.0"
