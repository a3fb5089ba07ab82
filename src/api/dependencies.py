from __future__ import annotations

from functools import lru_cache

from src.repositories.sales_contribution_repository import SalesContributionRepository
from src.services.sales_contribution_service import SalesContributionService


@lru_cache
def get_sales_contribution_repository() -> SalesContributionRepository:
    return SalesContributionRepository()


# The service holds the result cache and the published snapshot, so it is shared too.
@lru_cache
def get_sales_contribution_service() -> SalesContributionService:
    return SalesContributionService(repository=get_sales_contribution_repository())
