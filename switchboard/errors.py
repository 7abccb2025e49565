"""Error taxonomy shared by the routing core."""


class SwitchboardError(Exception):
    code = "switchboard_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class TransportUnavailable(SwitchboardError):
    """Transport is not connected. Retrying is up to the caller."""

    code = "not_connected"


class TransportSendFailed(SwitchboardError):
    """Delivery was attempted and failed. Not retried automatically."""

    code = "transport_error"


class PersistenceFailed(SwitchboardError):
    code = "persistence_error"


class MalformedEvent(SwitchboardError):
    code = "malformed_event"


class UnknownState(SwitchboardError):
    code = "unknown_state"


class TransportDriverError(Exception):
    """Raised by transport drivers. `logged_out` marks a terminal credential failure."""

    def __init__(self, message: str, logged_out: bool = False, status_code: int | None = None):
        self.message = message
        self.logged_out = logged_out
        self.status_code = status_code
        super().__init__(message)


_ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (TransportUnavailable, TransportSendFailed, PersistenceFailed, MalformedEvent, UnknownState)
}


def error_for_code(code: str | None, message: str | None) -> SwitchboardError:
    cls = _ERRORS_BY_CODE.get(code or "", SwitchboardError)
    return cls(message or code or "unknown error")
