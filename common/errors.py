"""
Error taxonomy for the real-time coordination layer.

Coordinators raise these; the WebSocket layer turns them into ``error``
events and the REST layer into HTTP status codes.
"""


class FleetError(Exception):
    """Base class for coordinator errors."""

    http_status = 500


class NotFoundError(FleetError):
    """A referenced vehicle, alert or service id does not resolve in the store."""

    http_status = 404

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InvalidInputError(FleetError):
    """Caller-supplied data fails a precondition."""

    http_status = 400


class StoreFailureError(FleetError):
    """The persisted store rejected a call."""

    http_status = 503
