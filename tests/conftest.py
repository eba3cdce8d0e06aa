from dataclasses import dataclass, field
from decimal import Decimal
from typing import AsyncGenerator, Optional
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from catalog_workflow.db.models import Catalog, CatalogProduct, Country, Currency, Locale
from catalog_workflow.db.session import init_models
from catalog_workflow.engine import WorkflowEngine, build_engine
from catalog_workflow.services.currency import StaticCurrencyRateService
from catalog_workflow.services.products import ProductSummary
from catalog_workflow.services.translation import TaggingTranslationService
from catalog_workflow.settings import Settings

from helpers import FakeProductLookup


@dataclass
class SeedData:
    currencies: dict[str, UUID] = field(default_factory=dict)
    countries: dict[str, UUID] = field(default_factory=dict)
    locales: dict[str, UUID] = field(default_factory=dict)
    catalog_id: Optional[UUID] = None
    catalog_product_id: Optional[UUID] = None
    product_id: Optional[UUID] = None


CURRENCIES = [
    ("USD", "US Dollar", "$", 2),
    ("EUR", "Euro", "€", 2),
    ("GBP", "British Pound", "£", 2),
    ("JPY", "Japanese Yen", "¥", 0),
]

COUNTRIES = [
    ("US", "United States"),
    ("DE", "Germany"),
    ("GB", "United Kingdom"),
    ("FR", "France"),
    ("JP", "Japan"),
    ("IT", "Italy"),
]

# code, name, country, currency
LOCALES = [
    ("en_US", "English (US)", "US", "USD"),
    ("de_DE", "German (Germany)", "DE", "EUR"),
    ("en_GB", "English (UK)", "GB", "GBP"),
    ("fr_FR", "French (France)", "FR", "EUR"),
    ("ja_JP", "Japanese (Japan)", "JP", "JPY"),
    ("it_IT", "Italian (Italy)", "IT", "EUR"),
]


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        SQLALCHEMY_DATABASE_URI="sqlite+aiosqlite://",
        WORKER_POLL_INTERVAL_SECONDS=0.05,
        WORKER_ERROR_PAUSE_SECONDS=0.05,
        CURRENCY_REFRESH_DELAY_SECONDS=0,
        COMPLIANCE_UPDATE_DELAY_SECONDS=0,
        CATALOG_RECALCULATION_DELAY_SECONDS=0,
        STALE_SWEEP_INTERVAL_SECONDS=0.05,
    )


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def seed(session_factory: async_sessionmaker[AsyncSession]) -> SeedData:
    data = SeedData()

    async with session_factory() as session:
        for code, name, symbol, places in CURRENCIES:
            currency = Currency(id=uuid4(), code=code, name=name, symbol=symbol, decimal_places=places)
            session.add(currency)
            data.currencies[code] = currency.id

        for code, name in COUNTRIES:
            country = Country(id=uuid4(), code=code, name=name)
            session.add(country)
            data.countries[code] = country.id

        for code, name, country, currency in LOCALES:
            locale = Locale(
                id=uuid4(),
                code=code,
                name=name,
                country_id=data.countries[country],
                currency_id=data.currencies[currency],
            )
            session.add(locale)
            data.locales[code] = locale.id

        catalog = Catalog(id=uuid4(), code="US-MAIN", name="US Main Catalog", currency_id=data.currencies["USD"])
        session.add(catalog)
        data.catalog_id = catalog.id

        data.product_id = uuid4()
        catalog_product = CatalogProduct(
            id=uuid4(),
            catalog_id=catalog.id,
            product_id=data.product_id,
            sku="WH-1000",
            base_price=Decimal("100.00"),
        )
        session.add(catalog_product)
        data.catalog_product_id = catalog_product.id

        await session.commit()

    return data


@pytest.fixture
def products(seed: SeedData) -> FakeProductLookup:
    lookup = FakeProductLookup()
    lookup.add(ProductSummary(
        id=seed.product_id,
        sku="WH-1000",
        name="Wireless Headphones",
        description="Noise cancelling wireless headphones with long battery life",
        long_description="Premium noise cancelling wireless headphones with thirty hours of battery life and fast charging",
        base_price=Decimal("120.00"),
    ))
    return lookup


@pytest.fixture
async def workflow_engine(
    session_factory: async_sessionmaker[AsyncSession],
    test_settings: Settings,
    products: FakeProductLookup
) -> AsyncGenerator[WorkflowEngine, None]:
    engine = build_engine(
        session_factory,
        test_settings,
        translator=TaggingTranslationService(),
        products=products,
        currency=StaticCurrencyRateService(),
    )
    yield engine
    await engine.stop()
