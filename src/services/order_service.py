"""Order persistence: lookups, atomic creation and status transitions."""

import logging
from decimal import Decimal
from typing import Any

from src.core.supabase import get_supabase_client
from src.models.order import OrderStatus, OrderWithItems

logger = logging.getLogger(__name__)

ORDER_WITH_ITEMS = "*, order_items(*)"

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"


def _jsonable(row: dict[str, Any]) -> dict[str, Any]:
    """Render Decimals as strings; PostgREST casts them back to numeric."""
    return {key: str(value) if isinstance(value, Decimal) else value for key, value in row.items()}


class OrderService:
    """Service for order reads and writes against Supabase."""

    def __init__(self) -> None:
        """Initialize order service with Supabase client."""
        self.client = get_supabase_client()

    async def find_order_by_idempotency_key(self, idempotency_key: str) -> OrderWithItems | None:
        """Get the order recorded for a provider payment, with its items.

        Args:
            idempotency_key: ``<provider>:<provider reference>``.

        Returns:
            dict | None: The order with ``order_items``, or None if not recorded yet.
        """
        response = (
            self.client.table("orders")
            .select(ORDER_WITH_ITEMS)
            .eq("idempotency_key", idempotency_key)
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def insert_order(
        self,
        order: dict[str, Any],
        items: list[dict[str, Any]],
        history: dict[str, Any],
    ) -> OrderWithItems:
        """Insert an order, its items and its first history entry in one transaction.

        Runs the ``materialize_order`` Postgres function, so either all three
        record kinds are written or none are.

        Args:
            order: orders row without ``id``/``created_at``.
            items: order_items rows without ``order_id``.
            history: order_history row without ``order_id``.

        Returns:
            dict: The created order with ``order_items``.

        Raises:
            postgrest.exceptions.APIError: On database errors, including a
                unique violation when the idempotency key is already recorded.
        """
        response = self.client.rpc(
            "materialize_order",
            {
                "p_order": _jsonable(order),
                "p_items": [_jsonable(item) for item in items],
                "p_history": _jsonable(history),
            },
        ).execute()
        data = response.data
        return data[0] if isinstance(data, list) else data

    async def transition_order_status(
        self,
        order_id: str,
        from_status: OrderStatus,
        to_status: OrderStatus,
        note: str,
    ) -> bool:
        """Move an order between statuses and append one history entry.

        The transition only applies while the order is still in
        ``from_status``, so replayed events cannot append duplicate history.

        Args:
            order_id: The order's ID.
            from_status: Status the order must currently have.
            to_status: New status.
            note: History note.

        Returns:
            bool: True if the transition was applied.
        """
        response = self.client.rpc(
            "transition_order_status",
            {
                "p_order_id": order_id,
                "p_from_status": from_status,
                "p_to_status": to_status,
                "p_note": note,
            },
        ).execute()
        applied = bool(response.data)
        if applied:
            logger.info("Order %s moved %s -> %s", order_id, from_status, to_status)
        else:
            logger.info("Order %s not in %s; transition to %s skipped", order_id, from_status, to_status)
        return applied
