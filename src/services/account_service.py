"""Customer account lookup for linking orders to order history."""

import logging

from src.core.supabase import get_supabase_client

logger = logging.getLogger(__name__)


def _escape_like(value: str) -> str:
    """Escape LIKE wildcards so the pattern matches the literal value."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class AccountService:
    """Resolves storefront accounts from the ``profiles`` table.

    Each profile row shares its ``id`` with the Supabase Auth user and
    mirrors the account email.
    """

    def __init__(self) -> None:
        """Initialize account service with Supabase client."""
        self.client = get_supabase_client()

    async def find_user_id_by_email(self, email: str | None) -> str | None:
        """Find the account whose email matches, case-insensitively.

        Args:
            email: Confirmed customer email from the payment provider.

        Returns:
            str | None: The user's ID, or None if no account uses this email.
        """
        if not email or not email.strip():
            return None
        wanted = email.strip()

        response = (
            self.client.table("profiles")
            .select("id")
            .ilike("email", _escape_like(wanted))
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return str(response.data[0]["id"])
