"""Catalog reads used to re-price checkout carts."""

import logging

from src.core.money import to_money
from src.core.supabase import get_supabase_client
from src.models.product import TrustedProduct

logger = logging.getLogger(__name__)


class ProductCatalogService:
    """Read-only access to the products table."""

    def __init__(self) -> None:
        """Initialize catalog service with Supabase client."""
        self.client = get_supabase_client()

    async def get_products_by_ids(self, product_ids: list[str]) -> dict[str, TrustedProduct]:
        """Fetch trusted product records for the given IDs.

        Args:
            product_ids: Product IDs referenced by a cart. Duplicates are allowed.

        Returns:
            dict: Product records keyed by ID. IDs with no catalog row are absent.
        """
        unique_ids = list(dict.fromkeys(product_ids))
        if not unique_ids:
            return {}

        response = (
            self.client.table("products")
            .select("id, name, price, images, in_stock")
            .in_("id", unique_ids)
            .execute()
        )

        products: dict[str, TrustedProduct] = {}
        for row in response.data or []:
            products[str(row["id"])] = TrustedProduct(
                id=str(row["id"]),
                name=row["name"],
                price=to_money(row["price"]),
                images=row.get("images") or [],
                in_stock=bool(row.get("in_stock", False)),
            )

        logger.debug("Loaded %d of %d requested products", len(products), len(unique_ids))
        return products
