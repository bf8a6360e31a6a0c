class TripEngineError(Exception):
    """Base class for trip engine errors."""


class InvalidSample(TripEngineError):
    """Malformed or out-of-range sample. Dropped, never fatal."""


class OutOfOrderSample(TripEngineError):
    """Sample timestamp not after the session's last accepted sample."""


class NoActiveSession(TripEngineError):
    def __init__(self, device_id):
        super().__init__(f"no active trip session for device {device_id}")
        self.device_id = device_id


class AlreadyActive(TripEngineError):
    def __init__(self, device_id, session_id):
        super().__init__(f"device {device_id} already has open session {session_id}")
        self.device_id = device_id
        self.session_id = session_id


class PersistenceFailure(TripEngineError):
    """Trip record could not be stored after all retry attempts."""

    def __init__(self, device_id, trip_id, cause=None):
        super().__init__(f"failed to persist trip {trip_id} for device {device_id}: {cause}")
        self.device_id = device_id
        self.trip_id = trip_id
        self.cause = cause
