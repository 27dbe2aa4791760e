"""
Domain exceptions raised by the engine and its stores.

Routes translate these into HTTP errors.
"""


class EngineError(Exception):
    """Base class for automation engine errors."""


class NotFoundError(EngineError):
    """A referenced entity does not exist."""


class RuleNotFoundError(NotFoundError):
    def __init__(self, rule_id: str):
        super().__init__(f"Automation rule not found: {rule_id}")
        self.rule_id = rule_id


class WebhookNotFoundError(NotFoundError):
    def __init__(self, webhook_id: str):
        super().__init__(f"Webhook not found: {webhook_id}")
        self.webhook_id = webhook_id


class DeliveryNotFoundError(NotFoundError):
    def __init__(self, delivery_id: str):
        super().__init__(f"Delivery not found: {delivery_id}")
        self.delivery_id = delivery_id


class InvalidDeliveryStateError(EngineError):
    """The delivery cannot be retried in its current state."""


class DeliveryLockedError(EngineError):
    """Another worker currently holds the delivery's lease."""

    def __init__(self, delivery_id: str):
        super().__init__(f"Delivery is being processed by another worker: {delivery_id}")
        self.delivery_id = delivery_id
