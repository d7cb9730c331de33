"""
Inventory and order workflow tools.

:class:`OrderStore` owns the inventory and the order book.  Every tool built by
:func:`build_order_tools` closes over the same store, so agents running concurrently share it; all
mutations go through the store's lock so two "create order" calls can never both consume the same
stock.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import (
    dataclass,
    field,
)
from datetime import (
    datetime,
    timezone,
)
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
)

from stepwise.tools.registry import (
    ToolDescriptor,
    param,
)

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_SHIPPED = "shipped"


class OrderError(RuntimeError):
    """Base class for order workflow failures."""


class UnknownProductError(OrderError):
    """The product is not stocked."""


class InsufficientStockError(OrderError):
    """Not enough stock to fulfil the order."""


class OrderNotFoundError(OrderError):
    """No order with the given id."""


@dataclass
class Order:
    """A customer order."""

    order_id: int
    product: str
    quantity: int
    customer: str
    status: str = STATUS_PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class OrderStore:
    """Inventory plus order book, with a single writer at a time."""

    def __init__(self, inventory: Optional[Mapping[str, int]] = None):
        self._inventory: Dict[str, int] = dict(inventory or {})
        self._orders: Dict[int, Order] = {}
        self._lock = asyncio.Lock()

    # Reads -------------------------------------------------------------
    def stock(self, product: str) -> int:
        """Current stock of *product*."""
        try:
            return self._inventory[product]
        except KeyError as exc:
            raise UnknownProductError(f"Product not found: {product}") from exc

    def inventory(self) -> Dict[str, int]:
        """Snapshot of the whole inventory."""
        return dict(self._inventory)

    def get_order(self, order_id: int) -> Order:
        """Return the order with *order_id*."""
        try:
            return self._orders[order_id]
        except KeyError as exc:
            raise OrderNotFoundError(f"Order not found: {order_id}") from exc

    def orders(self) -> List[Order]:
        """All orders in creation order."""
        return list(self._orders.values())

    # Writes ------------------------------------------------------------
    async def create_order(self, product: str, quantity: int, customer: str) -> Order:
        """Reserve *quantity* units of *product* and record a pending order."""
        if quantity <= 0:
            raise ValueError("quantity must be a positive integer")
        async with self._lock:
            available = self.stock(product)
            if available < quantity:
                raise InsufficientStockError(
                    f"Insufficient stock for {product}: requested {quantity}, available {available}"
                )
            self._inventory[product] = available - quantity
            order = Order(
                order_id=len(self._orders) + 1,
                product=product,
                quantity=quantity,
                customer=customer,
            )
            self._orders[order.order_id] = order
        logger.info("Created order %d: %s x %d for %s", order.order_id, product, quantity, customer)
        return order

    async def ship_order(self, order_id: int) -> Tuple[Order, bool]:
        """Mark an order shipped.  Returns ``(order, changed)``; shipping twice is a no-op."""
        async with self._lock:
            order = self.get_order(order_id)
            if order.status == STATUS_SHIPPED:
                return order, False
            order.status = STATUS_SHIPPED
        logger.info("Shipped order %d", order_id)
        return order, True


def build_order_tools(store: OrderStore) -> List[ToolDescriptor]:
    """Build the inventory and order tools, all bound to *store*."""

    def check_inventory(args: Dict[str, Any]) -> str:
        product = args["product"]
        try:
            return f"{product} in stock: {store.stock(product)}"
        except UnknownProductError:
            return f"Product not found: {product}"

    async def create_order(args: Dict[str, Any]) -> str:
        order = await store.create_order(args["product"], args["quantity"], args["customer"])
        return (
            f"Order created. Order id: {order.order_id}, "
            f"item: {order.product} x {order.quantity}, status: {order.status}"
        )

    def query_order(args: Dict[str, Any]) -> str:
        order_id = args["order_id"]
        try:
            order = store.get_order(order_id)
        except OrderNotFoundError:
            return f"Order not found: {order_id}"
        return (
            f"Order {order.order_id}: {order.product} x {order.quantity} for {order.customer}, "
            f"status: {order.status}"
        )

    async def ship_order(args: Dict[str, Any]) -> str:
        order, changed = await store.ship_order(args["order_id"])
        if not changed:
            return f"Warning: order {order.order_id} has already been shipped; nothing changed."
        return f"Order {order.order_id} shipped."

    return [
        ToolDescriptor(
            name="check_inventory",
            description="Check how many units of a product are in stock.",
            handler=check_inventory,
            parameters=(param("product", "string", description="Product name"),),
        ),
        ToolDescriptor(
            name="create_order",
            description="Create an order, reserving stock for it.",
            handler=create_order,
            parameters=(
                param("product", "string", description="Product name"),
                param("quantity", "integer", description="Units to buy"),
                param(
                    "customer",
                    "string",
                    required=False,
                    default="guest",
                    description="Customer name",
                ),
            ),
        ),
        ToolDescriptor(
            name="query_order",
            description="Look up an order's items and status.",
            handler=query_order,
            parameters=(param("order_id", "integer", description="Order id"),),
        ),
        ToolDescriptor(
            name="ship_order",
            description="Ship a pending order.",
            handler=ship_order,
            parameters=(param("order_id", "integer", description="Order id"),),
        ),
    ]
