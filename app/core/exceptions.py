class StorefrontError(Exception):
    """Base exception for the storefront webhook layer."""

    pass


class OrderNotFoundError(StorefrontError):
    """Raised when an order cannot be resolved."""

    def __init__(self, reference: str | int):
        self.reference = reference
        super().__init__(f"Order not found: {reference}")


class OrderLockedError(StorefrontError):
    """Raised when a paid or locked order would be modified."""

    def __init__(self, order_number: str, reason: str):
        self.order_number = order_number
        self.reason = reason
        super().__init__(f"Order {order_number} cannot be modified: {reason}")


class PersistenceError(StorefrontError):
    """Raised when a storage write or read fails. Treated as transient."""

    pass


class WebhookConfigurationError(StorefrontError):
    """Raised when outbound webhook settings are invalid."""

    pass


class OrderUpdateRetriesExhaustedError(StorefrontError):
    """Raised when the order payment update still fails after local retries."""

    def __init__(self, order_number: str, attempts: int):
        self.order_number = order_number
        self.attempts = attempts
        super().__init__(f"Failed to update order {order_number} after {attempts} attempts")


class WebhookPreconditionError(StorefrontError):
    """Raised when a notification is requested for an order in the wrong state."""

    pass
