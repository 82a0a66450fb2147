"""Offering catalog: loads purchasable plans and orders them for display."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Sequence

from .exceptions import BillingError, CatalogEmpty, NetworkError, ProviderError
from .models import Offering, PeriodUnit

logger = logging.getLogger(__name__)

DEFAULT_PRODUCT_IDS = (
    "calCalculator.weekly.premium",
    "calCalculator.monthly.premium",
    "calCalculator.yearly.premium",
)

_PERIOD_RANK: Dict[PeriodUnit, int] = {
    PeriodUnit.YEAR: 0,
    PeriodUnit.MONTH: 1,
    PeriodUnit.WEEK: 2,
}


class OfferingSource(Protocol):
    """The part of the billing provider that lists offerings."""

    async def list_offerings(self, ids: Iterable[str]) -> Sequence[Offering]:
        ...


def sort_offerings(offerings: Iterable[Offering]) -> List[Offering]:
    """Order offerings yearly, monthly, weekly, then everything else.

    ``sorted`` is stable, so offerings sharing a rank keep catalog order.
    """

    return sorted(offerings, key=lambda offering: _PERIOD_RANK.get(offering.billing_period.unit, len(_PERIOD_RANK)))


class OfferingCatalog:
    """Fetches offering metadata for a fixed set of product identifiers."""

    def __init__(
        self,
        source: OfferingSource,
        product_ids: Iterable[str] = DEFAULT_PRODUCT_IDS,
        *,
        max_retries: int = 3,
        backoff_base: float = 2.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self._source = source
        self._product_ids = tuple(product_ids)
        if not self._product_ids:
            raise ValueError("product_ids must not be empty")
        self._max_retries = max(0, max_retries)
        self._backoff_base = max(0.0, backoff_base)
        self._sleep = sleep or asyncio.sleep
        self._offerings: List[Offering] = []

    @property
    def product_ids(self) -> tuple[str, ...]:
        return self._product_ids

    @property
    def offerings(self) -> List[Offering]:
        return list(self._offerings)

    @property
    def recommended(self) -> Optional[Offering]:
        return self._offerings[0] if self._offerings else None

    def find(self, product_id: str) -> Optional[Offering]:
        for offering in self._offerings:
            if offering.id == product_id:
                return offering
        return None

    async def load_offerings(self, ids: Optional[Iterable[str]] = None) -> List[Offering]:
        """Load and order offerings, raising :class:`CatalogEmpty` when none exist."""

        requested = tuple(ids) if ids is not None else self._product_ids
        offerings = list(await self._fetch(requested))

        if not offerings and len(requested) > 1:
            logger.warning(
                "Batch offering request returned nothing; retrying individually",
                extra={"product_ids": list(requested)},
            )
            offerings = await self._fetch_individually(requested)

        if not offerings:
            raise CatalogEmpty(detail={"product_ids": list(requested)})

        ordered = sort_offerings(offerings)
        self._offerings = ordered
        if len(ordered) < len(requested):
            logger.info(
                "Loaded %s of %s requested offerings",
                len(ordered),
                len(requested),
            )
        return list(ordered)

    async def load_offerings_with_retry(self, ids: Optional[Iterable[str]] = None) -> List[Offering]:
        """Retry transient failures and empty catalogs with exponential backoff."""

        attempt = 0
        while True:
            try:
                return await self.load_offerings(ids)
            except (ProviderError, CatalogEmpty) as exc:
                if attempt >= self._max_retries:
                    raise
                attempt += 1
                delay = self._backoff_base ** attempt
                logger.warning(
                    "Offering load failed (%s); retry %s/%s in %.1fs",
                    exc.code,
                    attempt,
                    self._max_retries,
                    delay,
                )
                await self._sleep(delay)

    async def _fetch(self, ids: Sequence[str]) -> Sequence[Offering]:
        try:
            return await self._source.list_offerings(set(ids))
        except BillingError:
            raise
        except (ConnectionError, TimeoutError, asyncio.TimeoutError) as exc:
            raise NetworkError(detail={"reason": str(exc)}) from exc
        except Exception as exc:
            raise ProviderError(detail={"reason": f"{type(exc).__name__}: {exc}"}) from exc

    async def _fetch_individually(self, ids: Sequence[str]) -> List[Offering]:
        found: List[Offering] = []
        for product_id in ids:
            try:
                found.extend(await self._fetch((product_id,)))
            except ProviderError:
                logger.warning("Offering %s could not be loaded", product_id, exc_info=True)
        return found


__all__ = [
    "DEFAULT_PRODUCT_IDS",
    "OfferingCatalog",
    "OfferingSource",
    "sort_offerings",
]
