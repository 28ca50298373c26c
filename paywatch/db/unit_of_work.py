"""Unit of Work pattern for managing database transactions."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paywatch.db.models import Company, Transaction
from paywatch.db.repositories import CompanyRepository, TransactionRepository


class UnitOfWork:
    """
    Unit of Work pattern implementation for managing database transactions.

    All repository operations inside one context share a session. The
    session comes either from an explicit factory (normal use) or from an
    existing session (tests that want to inspect uncommitted state).

    Usage:
        async with UnitOfWork(session_factory) as uow:
            company = await uow.companies.get_by_id(company_id)
            await uow.transactions.create(company_id=company.id, ...)
            await uow.commit()
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        session: Optional[AsyncSession] = None,
    ):
        """
        Initialize Unit of Work.

        Args:
            session_factory: Factory used to open a fresh session
            session: Optional existing session (useful for testing)
        """
        if session_factory is None and session is None:
            raise ValueError("UnitOfWork needs a session_factory or a session")

        self._session_factory = session_factory
        self._session = session
        self._owned_session = session is None

        self.companies: CompanyRepository = None  # type: ignore
        self.transactions: TransactionRepository = None  # type: ignore

    async def __aenter__(self):
        """Enter async context manager."""
        if self._owned_session:
            assert self._session_factory is not None
            self._session = self._session_factory()

        assert self._session is not None, "Session must be initialized"
        self.companies = CompanyRepository(Company, self._session)
        self.transactions = TransactionRepository(Transaction, self._session)

        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager."""
        try:
            if exc_type is not None:
                await self.rollback()
            elif self._owned_session:
                await self.commit()
        finally:
            if self._owned_session and self._session:
                await self._session.close()

    async def commit(self):
        """Commit the current transaction."""
        if self._session:
            await self._session.commit()

    async def rollback(self):
        """Rollback the current transaction."""
        if self._session:
            await self._session.rollback()

    async def flush(self):
        """Flush pending changes to the database without committing."""
        if self._session:
            await self._session.flush()
