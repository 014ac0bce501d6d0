"""Chronotab: scheduled resource opening with missed-run recovery."""

__version__ = "0.1.0"
