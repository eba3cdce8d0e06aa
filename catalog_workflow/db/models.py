from datetime import datetime
from decimal import Decimal
from typing import Optional, Any
from uuid import UUID, uuid4

from sqlalchemy import (
    String, Integer, Boolean, DateTime, Numeric, ForeignKey, Index, UniqueConstraint, Uuid, JSON, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import JSONB

from catalog_workflow.db.session import Base
from catalog_workflow.domain.states import WorkflowStatus

# JSONB on PostgreSQL, plain JSON elsewhere (sqlite in tests)
JsonType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(18, 4)

class Currency(Base):
    __tablename__ = "currencies"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(3), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    symbol: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    decimal_places: Mapped[int] = mapped_column(Integer, default=2)

class Country(Base):
    __tablename__ = "countries"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(2), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)

class Locale(Base):
    __tablename__ = "locales"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)  # e.g. "de_DE"
    name: Mapped[str] = mapped_column(String, nullable=False)
    country_id: Mapped[Optional[UUID]] = mapped_column(Uuid, ForeignKey("countries.id"), nullable=True)
    currency_id: Mapped[Optional[UUID]] = mapped_column(Uuid, ForeignKey("currencies.id"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    country: Mapped[Optional["Country"]] = relationship("Country", lazy="joined")
    currency: Mapped[Optional["Currency"]] = relationship("Currency", lazy="joined")

class Catalog(Base):
    __tablename__ = "catalogs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    currency_id: Mapped[Optional[UUID]] = mapped_column(Uuid, ForeignKey("currencies.id"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    currency: Mapped[Optional["Currency"]] = relationship("Currency", lazy="joined")

class CatalogProduct(Base):
    __tablename__ = "catalog_products"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    catalog_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("catalogs.id"), index=True, nullable=False)
    product_id: Mapped[UUID] = mapped_column(Uuid, index=True, nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    base_price: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    override_price: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Workflow projection (written by the engine only)
    locale_workflow_status: Mapped[Optional[str]] = mapped_column(String, default=WorkflowStatus.PENDING.value)
    content_workflow_status: Mapped[Optional[str]] = mapped_column(String, default=WorkflowStatus.PENDING.value)
    selected_locales: Mapped[Optional[list[str]]] = mapped_column(JsonType, nullable=True)
    workflow_initiated_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    workflow_initiated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    workflow_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))

    catalog: Mapped["Catalog"] = relationship("Catalog", lazy="joined")

    __table_args__ = (
        UniqueConstraint("catalog_id", "product_id", name="uq_catalog_products_catalog_product"),
    )

class ProductLocaleFinancial(Base):
    __tablename__ = "product_locale_financials"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    product_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    catalog_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("catalogs.id"), nullable=False)
    locale_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("locales.id"), nullable=False)

    base_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency_conversion_rate: Mapped[Decimal] = mapped_column(Numeric(18, 8), default=Decimal("1"))
    conversion_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    local_price: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    tax_rate: Mapped[Decimal] = mapped_column(Numeric(8, 4), default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    tax_included_price: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    regulatory_fees: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    environmental_fees: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))

    price_rounding_rules: Mapped[Optional[dict[str, Any]]] = mapped_column(JsonType, nullable=True)
    display_format: Mapped[Optional[dict[str, Any]]] = mapped_column(JsonType, nullable=True)

    promotional_price: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    promotion_start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    promotion_end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    effective_from: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    effective_to: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))

    __table_args__ = (
        UniqueConstraint("product_id", "catalog_id", "locale_id", name="uq_locale_financials_product_catalog_locale"),
    )

class ProductContent(Base):
    __tablename__ = "product_locale_content"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    product_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    locale_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("locales.id"), nullable=False)

    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    short_description: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    meta_title: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    meta_description: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    keywords: Mapped[Optional[list[str]]] = mapped_column(JsonType, nullable=True)

    content_version: Mapped[int] = mapped_column(Integer, default=1)
    translation_status: Mapped[str] = mapped_column(String, default="pending")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))

    locale: Mapped["Locale"] = relationship("Locale", lazy="joined")

    __table_args__ = (
        UniqueConstraint("product_id", "locale_id", name="uq_product_content_product_locale"),
    )

class WorkflowJob(Base):
    __tablename__ = "catalog_workflow_jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    job_name: Mapped[str] = mapped_column(String, nullable=False)
    job_type: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, default=WorkflowStatus.PENDING.value, index=True)

    catalog_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    catalog_product_id: Mapped[Optional[UUID]] = mapped_column(Uuid, index=True, nullable=True)
    product_ids: Mapped[Optional[list[str]]] = mapped_column(JsonType, nullable=True)
    locale_ids: Mapped[Optional[list[str]]] = mapped_column(JsonType, nullable=True)
    job_config: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict)

    total_items: Mapped[int] = mapped_column(Integer, default=0)
    completed_items: Mapped[int] = mapped_column(Integer, default=0)
    failed_items: Mapped[int] = mapped_column(Integer, default=0)
    progress_percentage: Mapped[int] = mapped_column(Integer, default=0)

    # Cached display fields
    catalog_code: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    product_skus: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    locale_codes: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    created_by: Mapped[str] = mapped_column(String, default="system")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    __table_args__ = (
        # Staleness sweep: open rows ordered by start time
        Index("ix_workflow_jobs_open", "status", "started_at"),
    )
