"""flock - authorization and auto-tagging for a spreadsheet-backed church office."""

__version__ = "0.3.0"
