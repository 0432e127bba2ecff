"""
Core modules for Data Plan Monitor.

This package contains message parsing, ingestion, consumption projection
and per-day usage.
"""
