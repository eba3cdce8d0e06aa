import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_workflow.db.models import Catalog, CatalogProduct, Locale, ProductLocaleFinancial
from catalog_workflow.domain.errors import CatalogNotFoundError, ProductNotFoundError, JobExecutionError
from catalog_workflow.domain.models import utcnow
from catalog_workflow.services.currency import CurrencyRateProvider
from catalog_workflow.services.products import ProductLookup, ProductSummary

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "USD"
DEFAULT_COUNTRY = "US"

# Placeholder policy until a tax service is integrated
TAX_RATES: dict[str, Decimal] = {
    "US": Decimal("0.0875"),  # Average US sales tax
    "CA": Decimal("0.13"),
    "GB": Decimal("0.20"),
    "DE": Decimal("0.19"),
    "FR": Decimal("0.20"),
    "IT": Decimal("0.22"),
    "ES": Decimal("0.21"),
    "NL": Decimal("0.21"),
    "RU": Decimal("0.20"),
    "AU": Decimal("0.10"),   # GST
    "JP": Decimal("0.10"),   # Consumption tax
    "KR": Decimal("0.10"),
    "IN": Decimal("0.18"),   # GST
    "SG": Decimal("0.07"),   # GST
}
DEFAULT_TAX_RATE = Decimal("0.10")

# (regulatory, environmental)
REGULATORY_FEES: dict[str, tuple[Decimal, Decimal]] = {
    "US": (Decimal("2.50"), Decimal("1.00")),
    "CA": (Decimal("3.00"), Decimal("1.50")),
    "GB": (Decimal("1.80"), Decimal("2.20")),
    "DE": (Decimal("2.20"), Decimal("3.50")),
    "FR": (Decimal("2.00"), Decimal("2.80")),
    "RU": (Decimal("1.50"), Decimal("0.50")),
    "AU": (Decimal("2.80"), Decimal("2.00")),
    "JP": (Decimal("1.20"), Decimal("1.80")),
}
DEFAULT_FEES = (Decimal("1.00"), Decimal("1.00"))

# Countries that display tax-inclusive prices by default
TAX_INCLUSIVE_DISPLAY_COUNTRIES = frozenset({"GB", "DE"})

def convert_currency(base_price: Decimal, rate: Decimal) -> Decimal:
    return base_price * rate

def tax_rate_for(country_code: Optional[str]) -> Decimal:
    return TAX_RATES.get((country_code or DEFAULT_COUNTRY).upper(), DEFAULT_TAX_RATE)

def calculate_tax(local_price: Decimal, tax_rate: Decimal) -> tuple[Decimal, Decimal]:
    """Returns (tax_amount, tax_included_price)."""
    tax_amount = local_price * tax_rate
    return tax_amount, local_price + tax_amount

def regulatory_fees_for(country_code: Optional[str]) -> tuple[Decimal, Decimal]:
    return REGULATORY_FEES.get((country_code or DEFAULT_COUNTRY).upper(), DEFAULT_FEES)

def rounding_increment(decimal_places: int) -> Decimal:
    return Decimal(1).scaleb(-decimal_places)

def round_to_increment(value: Decimal, increment: Decimal) -> Decimal:
    """Rounds to the nearest multiple of `increment`, halves away from zero."""
    steps = (value / increment).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return (steps * increment).quantize(increment)

def rounding_rules(decimal_places: int) -> dict[str, Any]:
    return {
        "type": "standard",
        "direction": "nearest",
        "precision": f"{rounding_increment(decimal_places):.4f}",
        "currency_precision": decimal_places,
    }

def display_format(locale_code: Optional[str], country_code: Optional[str], currency_code: Optional[str]) -> dict[str, Any]:
    english = (locale_code or "").lower().startswith("en")
    return {
        "show_savings": True,
        "show_tax_inclusive": (country_code or "").upper() in TAX_INCLUSIVE_DISPLAY_COUNTRIES,
        "currency_symbol_position": "before" if english else "after",
        "thousand_separator": "," if english else ".",
        "decimal_separator": "." if english else ",",
        "currency_code": currency_code or DEFAULT_CURRENCY,
    }

@dataclass
class LocaleFinancialQuote:
    base_price: Decimal
    conversion_rate: Decimal
    local_price: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    tax_included_price: Decimal
    regulatory_fees: Decimal
    environmental_fees: Decimal
    price_rounding_rules: dict[str, Any] = field(default_factory=dict)
    display_format: dict[str, Any] = field(default_factory=dict)

def compute_locale_financials(
    base_price: Decimal,
    conversion_rate: Decimal,
    country_code: Optional[str],
    locale_code: Optional[str],
    currency_code: Optional[str],
    decimal_places: int = 2
) -> LocaleFinancialQuote:
    """
    Conversion -> tax -> fees -> rounding -> display format.

    Tax is computed on the unrounded local price. Local price and tax are then
    rounded to the currency precision, and the tax-included price is their
    rounded sum, so the stored fields always add up.
    """
    local_price = convert_currency(base_price, conversion_rate)

    tax_rate = tax_rate_for(country_code)
    tax_amount, _ = calculate_tax(local_price, tax_rate)

    regulatory, environmental = regulatory_fees_for(country_code)

    increment = rounding_increment(decimal_places)
    local_price = round_to_increment(local_price, increment)
    tax_amount = round_to_increment(tax_amount, increment)

    return LocaleFinancialQuote(
        base_price=base_price,
        conversion_rate=conversion_rate,
        local_price=local_price,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        tax_included_price=round_to_increment(local_price + tax_amount, increment),
        regulatory_fees=regulatory,
        environmental_fees=environmental,
        price_rounding_rules=rounding_rules(decimal_places),
        display_format=display_format(locale_code, country_code, currency_code),
    )

def resolve_base_price(catalog_product: CatalogProduct, product: ProductSummary) -> Decimal:
    """Catalog override, then catalog base price, then the product's own base price."""
    for candidate in (catalog_product.override_price, catalog_product.base_price, product.base_price):
        if candidate is not None:
            return Decimal(candidate)
    raise JobExecutionError(f"No base price available for product {product.id}")

class LocaleFinancialService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        currency: CurrencyRateProvider,
        products: ProductLookup
    ):
        self.session_factory = session_factory
        self.currency = currency
        self.products = products

    async def calculate_locale_financials(
        self,
        product_id: UUID,
        catalog_id: UUID,
        locale_ids: list[UUID]
    ) -> list[UUID]:
        """
        Computes and upserts the financial record of every requested locale.
        Returns the locales that succeeded; failing locales are logged and skipped.
        """
        logger.info(
            "Calculating locale financials for product %s in catalog %s for %d locales",
            product_id, catalog_id, len(locale_ids)
        )

        calculated: list[UUID] = []

        async with self.session_factory() as session:
            catalog = await session.get(Catalog, catalog_id)
            if catalog is None:
                raise CatalogNotFoundError(catalog_id)

            stmt = select(CatalogProduct).where(
                CatalogProduct.catalog_id == catalog_id,
                CatalogProduct.product_id == product_id
            )
            catalog_product = await session.scalar(stmt)
            if catalog_product is None:
                raise ProductNotFoundError(product_id, f"catalog {catalog_id}")

            product = await self.products.get_product(product_id)
            if product is None:
                raise ProductNotFoundError(product_id)

            base_price = resolve_base_price(catalog_product, product)

            # Duplicates would collide on the unique key within one session
            for locale_id in dict.fromkeys(locale_ids):
                try:
                    locale = await session.get(Locale, locale_id)
                    if locale is None:
                        logger.warning("Locale %s not found, skipping", locale_id)
                        continue

                    await self._apply_locale_financials(session, product_id, catalog, locale, base_price)
                    calculated.append(locale_id)
                    logger.debug("Calculated financials for locale %s (%s)", locale.code, locale_id)
                except Exception as e:
                    logger.error("Failed to calculate financials for locale %s: %s", locale_id, e, exc_info=True)

            await session.commit()

        logger.info(
            "Calculated financials for %d out of %d locales", len(calculated), len(locale_ids)
        )
        return calculated

    async def _apply_locale_financials(
        self,
        session: AsyncSession,
        product_id: UUID,
        catalog: Catalog,
        locale: Locale,
        base_price: Decimal
    ) -> ProductLocaleFinancial:
        catalog_currency = catalog.currency.code if catalog.currency else DEFAULT_CURRENCY
        locale_currency = locale.currency.code if locale.currency else DEFAULT_CURRENCY
        decimal_places = locale.currency.decimal_places if locale.currency else 2
        country_code = locale.country.code if locale.country else DEFAULT_COUNTRY

        converted = locale_currency != catalog_currency
        if converted:
            rate = await self.currency.get_conversion_rate(catalog_currency, locale_currency)
        else:
            rate = Decimal("1")

        quote = compute_locale_financials(
            base_price,
            rate,
            country_code=country_code,
            locale_code=locale.code,
            currency_code=locale_currency,
            decimal_places=decimal_places,
        )

        # Everything that can fail runs before the session is touched
        stmt = select(ProductLocaleFinancial).where(
            ProductLocaleFinancial.product_id == product_id,
            ProductLocaleFinancial.catalog_id == catalog.id,
            ProductLocaleFinancial.locale_id == locale.id
        )
        record = await session.scalar(stmt)
        now = utcnow()

        if record is None:
            record = ProductLocaleFinancial(
                product_id=product_id,
                catalog_id=catalog.id,
                locale_id=locale.id,
                created_at=now,
            )
            session.add(record)

        record.base_price = quote.base_price
        record.currency_conversion_rate = quote.conversion_rate
        if converted:
            record.conversion_date = now
        record.local_price = quote.local_price
        record.tax_rate = quote.tax_rate
        record.tax_amount = quote.tax_amount
        record.tax_included_price = quote.tax_included_price
        record.regulatory_fees = quote.regulatory_fees
        record.environmental_fees = quote.environmental_fees
        record.price_rounding_rules = quote.price_rounding_rules
        record.display_format = quote.display_format
        record.effective_from = now
        record.is_active = True
        record.updated_at = now

        return record
