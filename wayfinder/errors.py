"""Error taxonomy for query processing and memory persistence."""


class WayfinderError(Exception):
    """Base class for all Wayfinder errors."""


class NoResponderAvailable(WayfinderError):
    """No responder is enabled, so a query cannot be routed."""


class ResponderGenerationFailed(WayfinderError):
    """A responder could not produce its answer."""

    def __init__(self, responder_id: str, message: str) -> None:
        super().__init__(f"{responder_id}: {message}")
        self.responder_id = responder_id
        self.message = message


class AllRespondersFailed(ResponderGenerationFailed):
    """Every responder in a batch returned an error answer."""

    def __init__(self, result_id: str, count: int) -> None:
        super().__init__("*", f"all {count} responder(s) failed for result {result_id}")
        self.result_id = result_id
        self.count = count


class ContextFetchFailed(WayfinderError):
    """Relevant context could not be read from memory."""


class PersistenceFailed(WayfinderError):
    """A memory write (or a read of persisted records) failed."""


class UserNotFound(WayfinderError):
    """The requested user does not exist."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class InvalidSession(WayfinderError):
    """The session id is not the user's current session."""


class ResponderNotFound(WayfinderError, KeyError):
    """No responder is registered under the requested id."""

    def __init__(self, responder_id: str) -> None:
        super().__init__(f"Unknown responder: {responder_id}")
        self.responder_id = responder_id

    def __str__(self) -> str:
        return f"Unknown responder: {self.responder_id}"
