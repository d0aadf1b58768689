"""Bank-book service: accounts, postings and atomic fund transfers."""

__version__ = "1.0.0"
