"""Checkout and order Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

# Amounts travel as Decimal internally and as JSON numbers on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

OrderStatus = Literal["pending", "confirmed", "shipped", "delivered", "cancelled"]


class CartItem(BaseModel):
    """A cart line as declared by the storefront. Untrusted.

    Accepts the storefront's cart shape (``id``, ``price``) as well as the
    explicit field names.
    """

    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(alias="id", description="Catalog product ID")
    declared_unit_price: Decimal = Field(alias="price", description="Unit price shown to the shopper")
    # Checked by the cart validator so that 2.5 yields invalid_quantity rather than a 422
    quantity: int | float = Field(description="Quantity ordered")
    name: str | None = Field(default=None, description="Display name (ignored for pricing)")
    image: str | None = Field(default=None, description="Display image (ignored)")
    variant: str | None = Field(default=None, description="Selected variant")
    size: str | None = Field(default=None, description="Selected size")
    quality: str | None = Field(default=None, description="Selected pearl quality")


class CheckoutRequest(BaseModel):
    """Body for both checkout initiation endpoints."""

    items: list[CartItem] = Field(default_factory=list, description="Cart lines")
    customer_email: str | None = Field(default=None, description="Pre-fill customer email")
    customer_name: str | None = Field(default=None, description="Customer full name")
    shipping_cost: Decimal = Field(default=Decimal("0"), description="Shipping cost chosen in the cart")


class CheckoutSessionResponse(BaseModel):
    """Redirect target returned by a checkout initiator."""

    url: str = Field(description="Provider-hosted checkout or approval URL")
    provider: Literal["stripe", "paypal"] = Field(description="Payment provider")
    provider_reference: str = Field(description="Stripe Checkout Session ID or PayPal order ID")
    total: Money = Field(description="Server-computed grand total")
    currency: str = Field(description="Settlement currency")


class PayPalCaptureRequest(BaseModel):
    """Body for POST /checkout/paypal/capture."""

    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(
        alias="orderId",
        pattern=r"^[A-Z0-9]{1,36}$",
        description="PayPal order ID returned at creation",
    )


class ShippingAddressSchema(BaseModel):
    """Shipping address as stored on the order."""

    model_config = ConfigDict(from_attributes=True)

    line1: str = ""
    line2: str = ""
    city: str = ""
    postal_code: str = ""
    country: str = ""
    name: str = ""


class OrderItemResponse(BaseModel):
    """Order line as persisted."""

    model_config = ConfigDict(from_attributes=True)

    product_id: str | None = Field(default=None, description="Catalog product ID when known")
    product_name: str = Field(description="Product name at time of purchase")
    product_image: str | None = Field(default=None, description="Product image URL")
    quantity: int = Field(ge=1, description="Quantity ordered")
    unit_price: Money = Field(description="Unit price charged")
    total_price: Money = Field(description="quantity x unit_price")


class OrderResponse(BaseModel):
    """Schema for order API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Order unique identifier")
    order_number: str = Field(description="Human-readable order number")
    status: OrderStatus = Field(description="Order status")
    customer_email: str = Field(description="Customer email")
    customer_name: str = Field(description="Customer name")
    customer_phone: str | None = Field(default=None, description="Customer phone")
    shipping_address: ShippingAddressSchema | None = Field(default=None, description="Shipping address")
    subtotal: Money = Field(description="Items subtotal")
    shipping_cost: Money = Field(description="Shipping cost")
    total: Money = Field(description="Amount charged")
    currency: str = Field(default="eur", description="Settlement currency")
    needs_review: bool = Field(default=False, description="Flagged for manual reconciliation")
    created_at: datetime | None = Field(default=None, description="Creation timestamp")
    items: list[OrderItemResponse] = Field(default_factory=list, description="Order lines")


class PayPalCaptureResponse(BaseModel):
    """Result of a PayPal capture call."""

    success: bool = True
    already_processed: bool = Field(default=False, description="True when the order existed before this call")
    order: OrderResponse
    provider_reference: str = Field(description="PayPal order ID")


class CheckoutSessionLineItem(BaseModel):
    """Line item as reported by Stripe for a completed session."""

    name: str
    quantity: int
    unit_amount: Money
    total: Money


class CheckoutSessionSummary(BaseModel):
    """Read-only summary shown on the payment success page."""

    id: str = Field(description="Stripe Checkout Session ID")
    customer_email: str | None = None
    customer_name: str | None = None
    amount_total: Money
    currency: str
    payment_status: str
    shipping_address: ShippingAddressSchema | None = None
    items: list[CheckoutSessionLineItem] = Field(default_factory=list)
    created_at: datetime
    order_number: str | None = Field(default=None, description="Set once the order has been recorded")
