class EngineError(Exception):
    """Base class for errors raised by the attendance engine."""


class ValidationError(EngineError):
    """Request payload rejected at the boundary.

    `fields` is a list of {"field": ..., "message": ...} dicts naming every
    offending field, so the caller can fix them all in one round-trip.
    """

    def __init__(self, fields, message='Invalid payload'):
        super().__init__(message)
        self.message = message
        self.fields = list(fields)

    def to_dict(self):
        return {'error': self.message, 'fields': self.fields}


class PersistenceError(EngineError):
    """A persistence collaborator failed; the whole run is aborted."""


class SessionNotFound(EngineError):
    pass
