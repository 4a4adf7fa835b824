"""Weather and air-quality ingestion with daily aggregates and threshold alerts."""

__version__ = "0.1.0"
