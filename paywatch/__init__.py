"""PayWatch: bank-alert email ingestion for small-business payment dashboards."""

__version__ = "0.1.0"
