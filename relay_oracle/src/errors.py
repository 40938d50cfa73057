"""Error kinds raised by the price store, the gate and the submission path.

Absence of a price is never an error (lookups return an ``exists`` flag) and
a zero-valued operand in a pair computation yields a zero result, so neither
has an exception type here.
"""


class OracleError(Exception):
    """Base exception for oracle errors."""

    pass


class PermissionDenied(OracleError):
    """Raised when a caller is not authorized for a write or admin call.

    :ivar caller: Identity that attempted the call.
    """

    def __init__(self, caller: str | None, message: str):
        """Initialize the error.

        :param caller: Identity that attempted the call.
        :param message: What the caller was not allowed to do.
        """
        self.caller = caller
        super().__init__(f"{message} (caller={caller})")


class InvalidInput(OracleError, ValueError):
    """Raised for malformed batches, records or identities."""

    pass


class TransientSubmissionFailure(OracleError):
    """Raised by a gate client when a submission may succeed on retry."""

    pass


class HardFailure(OracleError):
    """Raised when retries are exhausted or the gate is misconfigured."""

    pass
