"""Order service exports."""

from .lifecycle import (  # noqa: F401
    OrderDraft,
    OrderNotFoundError,
    OrderOutcome,
    OrderService,
    OrderStateError,
    compute_order_total,
    generate_order_number,
)
