class FabjoinError(Exception):
    """Base of every fatal condition raised by fabjoin components.

    Components raise these and let them travel up the call chain,
    the CLI entry point is the only place that turns them into
    a printed diagnostic and a process exit code.
    """

    exit_code = 1
    kind = "error"

    def __init__(self, message, cause=None):
        Exception.__init__(self, message)
        self.message = message
        self.cause = cause

    def __str__(self):
        if self.cause is not None:
            return f"{self.message} - exception {repr(self.cause)}"
        return self.message


class TransportError(FabjoinError):
    kind = "transport"


class NotFoundError(FabjoinError):
    kind = "not-found"


class RejectionError(FabjoinError):
    kind = "rejection"


class MalformedInputError(FabjoinError):
    kind = "malformed-input"


class ProfileError(FabjoinError):
    kind = "profile"


class LedgerError(FabjoinError):
    kind = "ledger"
