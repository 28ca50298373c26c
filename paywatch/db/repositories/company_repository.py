"""Company repository with specialized queries."""

from typing import Optional

from sqlalchemy import select

from paywatch.db.models.company import Company
from paywatch.db.repository import BaseRepository


class CompanyRepository(BaseRepository[Company]):
    """Repository for Company model."""

    async def get_by_code(self, company_code: str) -> Optional[Company]:
        """Get a company by its public code."""
        return await self.get_by_field("company_code", company_code)

    async def validate_staff_login(
        self, company_code: str, staff_pin: str
    ) -> Optional[Company]:
        """
        Resolve kiosk credentials to a company.

        Args:
            company_code: Public company code
            staff_pin: Staff PIN

        Returns:
            The company when code and PIN match and the system is active,
            otherwise None
        """
        query = select(self.model).where(
            self.model.company_code == company_code,
            self.model.staff_pin == staff_pin,
            self.model.system_active.is_(True),
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()
