import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Protocol
from uuid import UUID

import httpx

logger = logging.getLogger(__name__)

@dataclass
class ProductSummary:
    id: UUID
    sku: Optional[str]
    name: str
    description: str
    long_description: Optional[str] = None
    base_price: Optional[Decimal] = None

class ProductLookup(Protocol):
    async def get_product(self, product_id: UUID) -> Optional[ProductSummary]: ...

class ProductStagingClient:
    """Reads products from the product staging API (catalog-of-record)."""

    def __init__(self, base_url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    @staticmethod
    def _parse_price(value: Any) -> Optional[Decimal]:
        if value is None:
            return None
        try:
            return Decimal(str(value))
        except (InvalidOperation, ValueError):
            return None

    async def get_product(self, product_id: UUID) -> Optional[ProductSummary]:
        """
        Returns None when the product does not exist.
        Transport and 5xx errors propagate so the calling job is retried.
        """
        resp = await self.client.get(f"/api/products/{product_id}")
        if resp.status_code == 404:
            logger.info("Product %s not found in staging system", product_id)
            return None
        resp.raise_for_status()

        data = resp.json()
        description = data.get("description") or ""
        return ProductSummary(
            id=product_id,
            sku=data.get("sku"),
            name=data.get("name") or "Unnamed Product",
            description=description,
            long_description=data.get("longDescription") or description,
            base_price=self._parse_price(data.get("basePrice")),
        )

    async def close(self):
        await self.client.aclose()
