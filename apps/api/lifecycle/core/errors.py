"""Error taxonomy shared by the lifecycle services."""


class LifecycleError(Exception):
    """Base class for lifecycle automation errors."""

    pass


class NotFoundError(LifecycleError, LookupError):
    """Raised when a contact, flow, segment or template does not exist."""

    pass


class InvalidDefinitionError(LifecycleError, ValueError):
    """Raised when a flow or segment definition is malformed.

    Only raised while a definition is being created; ticks trust stored
    definitions.
    """

    pass


class FlowRunError(LifecycleError, RuntimeError):
    """Raised for unexpected state while a flow run is being processed."""

    pass
