class DeliveryError(Exception):
    """Base for lifecycle errors. ``code`` is the stable kind clients match on."""

    code = "delivery_error"
    status_code = 400
    default_message = "Delivery operation failed"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class DeliveryValidationError(DeliveryError):
    code = "validation_error"

    def __init__(self, field, message=None):
        self.field = field
        super().__init__(message or f"{field} is required")


class InvalidTransition(DeliveryError):
    code = "invalid_transition"

    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change status from {current} to {requested}")


class TransitionConflict(InvalidTransition):
    code = "transition_conflict"
    status_code = 409


class NotAssignable(DeliveryError):
    code = "not_assignable"

    def __init__(self, current):
        self.current = current
        super().__init__(f"Only pending deliveries can be assigned (current status: {current})")


class DriverUnavailable(DeliveryError):
    code = "driver_unavailable"
    default_message = "Driver is not available"


class DeletionNotAllowed(DeliveryError):
    code = "deletion_not_allowed"

    def __init__(self, current):
        self.current = current
        super().__init__(f"Cannot delete active deliveries (current status: {current})")


class DuplicateIdentifier(DeliveryError):
    code = "duplicate_identifier"
    status_code = 409

    def __init__(self, tracking_code):
        self.tracking_code = tracking_code
        super().__init__(f"Tracking code {tracking_code} is already in use")


class DeliveryNotFound(DeliveryError):
    code = "not_found"
    status_code = 404
    default_message = "Delivery not found"
