"""Cart context stashed in provider metadata between checkout and confirmation.

The value is compact JSON with a version tag, bounded to the provider's field
size. Line items and amounts are always re-read from the provider's own
record at confirmation time; this payload only carries customer identity and
the selected options, so losing it degrades detail but never blocks an order.
"""

import json
import logging

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.services.cart_validator import ValidatedCart

logger = logging.getLogger(__name__)

METADATA_VERSION = 1

# (product_id, quantity, variant, size, quality)
MetadataLine = tuple[str, int, str | None, str | None, str | None]


class CartMetadata(BaseModel):
    """Versioned cart context. Short aliases keep the encoded form small."""

    model_config = ConfigDict(populate_by_name=True)

    version: int = Field(default=METADATA_VERSION, alias="v")
    customer_email: str | None = Field(default=None, alias="e")
    customer_name: str | None = Field(default=None, alias="n")
    lines: list[MetadataLine] = Field(default_factory=list, alias="i")
    truncated: bool = Field(default=False, alias="t")

    @classmethod
    def from_cart(
        cls,
        cart: ValidatedCart,
        customer_email: str | None = None,
        customer_name: str | None = None,
    ) -> "CartMetadata":
        return cls(
            customer_email=customer_email or None,
            customer_name=customer_name or None,
            lines=[
                (item.product_id, item.quantity, item.variant, item.size, item.quality)
                for item in cart.items
            ],
        )

    @staticmethod
    def _selected(line: MetadataLine) -> dict[str, str] | None:
        _product_id, _quantity, variant, size, quality = line
        selected = {"variant": variant, "size": size, "quality": quality}
        return {key: value for key, value in selected.items() if value} or None

    def options_for_lines(self, provider_lines: list[tuple[str | None, int]]) -> list[dict[str, str] | None]:
        """Selected options for each provider line, in provider order.

        Each metadata line is used at most once, so the same product bought
        twice with different options keeps both selections. A line with the
        same product and quantity is preferred, then the next unused line
        for that product.

        Args:
            provider_lines: ``(product_id, quantity)`` per line as the
                provider reports them.

        Returns:
            list: Options dict or None, aligned with ``provider_lines``.
        """
        unused = list(range(len(self.lines)))
        assigned: list[dict[str, str] | None] = []
        for product_id, quantity in provider_lines:
            candidates = [index for index in unused if self.lines[index][0] == product_id] if product_id else []
            exact = [index for index in candidates if self.lines[index][1] == quantity]
            chosen = (exact or candidates or [None])[0]
            if chosen is None:
                assigned.append(None)
                continue
            unused.remove(chosen)
            assigned.append(self._selected(self.lines[chosen]))
        return assigned

    def _dump(self) -> str:
        payload = self.model_dump(by_alias=True, exclude_none=True)
        if not payload["i"]:
            del payload["i"]
        if not payload["t"]:
            del payload["t"]
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)

    def encode(self, max_length: int) -> str:
        """Serialize within ``max_length`` characters.

        Lines are dropped first, then the customer name, then the email.
        """
        candidate = self
        encoded = candidate._dump()
        if len(encoded) <= max_length:
            return encoded

        candidate = candidate.model_copy(update={"lines": [], "truncated": True})
        encoded = candidate._dump()
        if len(encoded) <= max_length:
            logger.info("Cart metadata lines dropped to fit %d characters", max_length)
            return encoded

        candidate = candidate.model_copy(update={"customer_name": None})
        encoded = candidate._dump()
        if len(encoded) <= max_length:
            return encoded

        candidate = candidate.model_copy(update={"customer_email": None})
        logger.warning("Cart metadata reduced to version tag to fit %d characters", max_length)
        return candidate._dump()

    @classmethod
    def decode(cls, raw: str | None) -> "CartMetadata | None":
        """Parse an encoded value. Missing or corrupt input yields None."""
        if not raw:
            return None
        try:
            metadata = cls.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Discarding unreadable cart metadata: %s", e.errors(include_url=False)[:1])
            return None
        if metadata.version != METADATA_VERSION:
            logger.warning("Discarding cart metadata with unknown version %s", metadata.version)
            return None
        return metadata
