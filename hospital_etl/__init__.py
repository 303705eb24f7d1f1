"""Staged ETL pipeline for hospital data uploads."""

__version__ = "0.1.0"
