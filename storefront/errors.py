"""Domain exceptions raised by the services and translated by the routes."""


class StorefrontError(Exception):
    """Base exception for order and payment errors."""

    code = "error"
    status_code = 400

    def __init__(self, message: str | None = None, **data):
        self.data = data
        super().__init__(message or self.code)

    @property
    def message(self) -> str:
        return str(self)


class CheckoutError(StorefrontError):
    """Raised when a cart cannot be turned into an order.

    ``code`` is one of ``empty_cart``, ``email_required``, ``unknown_variant``
    or ``insufficient_stock``.
    """

    def __init__(self, code: str, message: str | None = None, **data):
        self.code = code
        super().__init__(message or code, **data)


class OrderNotFound(StorefrontError):
    code = "order_not_found"
    status_code = 404

    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__("Order not found", order_id=str(order_id))


class OrderNotPayable(StorefrontError):
    code = "order_not_payable"

    def __init__(self, status: str, message: str | None = None):
        self.status = status
        super().__init__(message or "Order is not in a payable state", order_status=status)


class InvalidTransition(StorefrontError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"cannot move order from {current} to {target}", current=current, target=target)
