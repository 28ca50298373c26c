"""Exceptions raised by the ingestion pipeline."""


class IngestionError(Exception):
    """Base exception for ingestion failures."""

    pass


class ConfigurationError(IngestionError):
    """Raised when a required secret or credential is not configured."""

    pass


class UnknownCompanyError(IngestionError):
    """Raised when a request targets a company that does not exist."""

    pass


class PersistenceError(IngestionError):
    """Raised when the store rejects an insert or update."""

    pass


class InvalidStatusTransition(IngestionError):
    """Raised when a status change would move a transaction backwards."""

    pass
