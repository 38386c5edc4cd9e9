"""Error kinds the scheduling engine surfaces to its callers.

All of them are expected outcomes the caller can act on. Each carries a
machine-readable code, the HTTP status the API answers with, and details.
"""


class SchedulingError(Exception):
    code = 'SCHEDULING_ERROR'
    status_code = 400

    def __init__(self, message, details=None, code=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code:
            self.code = code

    def to_dict(self):
        return {'code': self.code, 'message': self.message, 'details': self.details}


class ValidationFailed(SchedulingError):
    code = 'VALIDATION_ERROR'


class InvalidLocation(ValidationFailed):
    code = 'INVALID_LOCATION'


class NotFound(SchedulingError):
    code = 'NOT_FOUND'
    status_code = 404


class BookingConflict(SchedulingError):
    code = 'BOOKING_CONFLICT'
    status_code = 409

    def __init__(self, message, conflicts=None, details=None):
        self.conflicts = list(conflicts or [])
        details = dict(details or {})
        details['conflicts'] = [conflict.to_dict() for conflict in self.conflicts]
        super().__init__(message, details=details)


class SlotConflict(BookingConflict):
    code = 'SLOT_CONFLICT'


class InvalidStatusTransition(SchedulingError):
    code = 'INVALID_STATUS_TRANSITION'


class MissingReason(SchedulingError):
    code = 'MISSING_REASON'


class SchedulingUnavailable(SchedulingError):
    """The write could not be completed; the whole operation may be retried"""
    code = 'SCHEDULING_UNAVAILABLE'
    status_code = 503
