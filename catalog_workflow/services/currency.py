import asyncio
import logging
from decimal import Decimal
from typing import Protocol

logger = logging.getLogger(__name__)

class CurrencyRateProvider(Protocol):
    async def get_conversion_rate(self, from_currency: str, to_currency: str) -> Decimal: ...

    async def refresh_rates(self) -> int: ...

# USD based mid rates
DEFAULT_EXCHANGE_RATES: dict[str, Decimal] = {
    "USD": Decimal("1.0"),
    "EUR": Decimal("0.85"),
    "GBP": Decimal("0.73"),
    "CAD": Decimal("1.25"),
    "AUD": Decimal("1.35"),
    "JPY": Decimal("110.0"),
    "KRW": Decimal("1180.0"),
    "INR": Decimal("74.5"),
    "SGD": Decimal("1.35"),
    "RUB": Decimal("75.0"),
    "CNY": Decimal("6.45"),
}

class StaticCurrencyRateService:
    """
    Rate table kept in memory. Cross rates are derived through USD.
    Stands in for a market data feed until one is wired in.
    """

    def __init__(self, rates: dict[str, Decimal] | None = None, refresh_delay: float = 0.0):
        self._rates = dict(rates or DEFAULT_EXCHANGE_RATES)
        self.refresh_delay = refresh_delay

    async def get_conversion_rate(self, from_currency: str, to_currency: str) -> Decimal:
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()

        if from_currency == to_currency:
            return Decimal("1")

        from_rate = self._rates.get(from_currency)
        to_rate = self._rates.get(to_currency)

        if from_rate is None or to_rate is None:
            logger.warning(
                "Exchange rate not found for %s to %s, using 1.0", from_currency, to_currency
            )
            return Decimal("1")

        rate = to_rate / from_rate
        logger.debug("Currency conversion rate from %s to %s: %s", from_currency, to_currency, rate)
        return rate

    async def refresh_rates(self) -> int:
        logger.info("Refreshing currency exchange rates")
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        logger.info("Currency rates refreshed (%d currencies)", len(self._rates))
        return len(self._rates)
