"""Error taxonomy shared by the services, the scheduler and the API layer."""


class PriceSyncError(Exception):
    """Base class for all price-sync errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PriceSyncError):
    """Malformed campaign fields, dates, discount rule or membership items."""


class NotFoundError(PriceSyncError):
    """A campaign, product or membership does not exist."""

    def __init__(self, entity: str, entity_id: object):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(PriceSyncError):
    """Concurrent-write contention or uniqueness violation. Retryable."""

    retryable = True


class TransientIOError(PriceSyncError):
    """The store is unavailable."""

    retryable = True
