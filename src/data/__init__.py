"""
Data boundary: pre-loaded bars from a local SQLite store or CSV files.

Depends on sim_core.contracts for Bar; no dependency from sim_core back to data.
"""

from data.bar_store import BarStore
from data.csv_import import parse_timestamp, read_bars_csv

__all__ = [
    "BarStore",
    "parse_timestamp",
    "read_bars_csv",
]
