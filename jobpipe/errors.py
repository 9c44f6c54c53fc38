class JobPipeError(Exception):
    """Base class for every error raised by jobpipe."""


class StoreUnavailable(JobPipeError):
    """The underlying store could not be reached or refused the operation."""


class ConstraintViolation(JobPipeError):
    """A write collided with a constraint of the jobs table."""


class PayloadError(JobPipeError):
    pass


class CorruptPayload(PayloadError):
    """A stored attribute payload cannot be decoded."""


class UnsupportedPayload(PayloadError):
    """An attribute mapping holds values the codec cannot represent."""
