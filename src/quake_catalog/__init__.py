"""Multi-source earthquake catalog: live feeds, a scraped national bulletin, and a SQLite store."""

__version__ = "0.3.0"
