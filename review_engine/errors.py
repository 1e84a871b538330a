"""Exceptions raised by the review engine.

Precondition errors abort the whole operation before anything is written.
Conflicts mean another writer already moved the row; callers treat them as
a no-op for that unit of work. Transient errors are the only ones retried.
"""


class ReviewEngineError(Exception):
    """Base class for engine errors"""

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        data = {'error': self.message}
        if self.details:
            data['details'] = self.details
        return data


class PreconditionError(ReviewEngineError):
    pass


class NotFoundError(PreconditionError):
    pass


class InvalidStatusError(PreconditionError):
    pass


class PhaseTransitionError(PreconditionError):
    pass


class ValidationError(PreconditionError):
    pass


class ConflictError(ReviewEngineError):
    """Duplicate active pair, or a guarded update that matched zero rows"""


class TransientError(ReviewEngineError):

    def __init__(self, message, status_code=None, **details):
        super().__init__(message, **details)
        self.status_code = status_code
