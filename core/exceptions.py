"""Typed exceptions for billing failures."""


class BillingError(Exception):
    """Base class for invoicing and payment errors."""


class ValidationError(BillingError):
    """
    Input failed validation.

    errors is a list of {"field": ..., "message": ...} dicts so callers can
    point at the offending field.
    """

    def __init__(self, message: str, errors: list[dict] | None = None):
        self.errors = errors or []
        super().__init__(message)


class NotFoundError(BillingError):
    """Referenced entity does not exist."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} {entity_id} not found")


class InvalidStateError(BillingError):
    """Operation is not legal in the entity's current state. Nothing was changed."""

    def __init__(self, message: str, current_state: str | None = None):
        self.current_state = current_state
        super().__init__(message)


class UnknownGatewayError(BillingError):
    """Gateway name is not in the registry (unknown or not configured)."""

    def __init__(self, gateway):
        self.gateway = getattr(gateway, "value", gateway)
        super().__init__(f"Payment gateway '{self.gateway}' is not configured")


class GatewayError(BillingError):
    """Provider rejected the request or could not be reached."""

    def __init__(self, gateway: str, message: str, status_code: int | None = None):
        self.gateway = gateway
        self.status_code = status_code
        super().__init__(f"{gateway}: {message}")


class SignatureInvalidError(BillingError):
    """Webhook authenticity could not be established. Never treated as success."""


class UnsupportedEventError(BillingError):
    """Webhook event type has no mapping."""

    def __init__(self, gateway: str, event_type: str | None):
        self.gateway = gateway
        self.event_type = event_type
        super().__init__(f"Unsupported {gateway} webhook event: {event_type}")


class NotRefundableError(BillingError):
    """No completed payment exists to refund."""


class FraudDeclinedError(BillingError):
    """Fraud screening declined the payment. No link was created."""

    def __init__(self, result):
        self.result = result
        self.flags = list(result.flags)
        super().__init__(
            f"Payment declined by fraud screening: {', '.join(self.flags) or 'high risk'}"
        )
