class TerminalError(RuntimeError):
    pass


class InvalidInputError(TerminalError):
    """Bad pairing code, wrong PIN, rejected request. Recoverable by the operator."""


class InvalidCredentialError(TerminalError):
    """The device token is unknown to the backend (revoked, deleted, never existed)."""


class TransientError(TerminalError):
    """Network failure, timeout or backend 5xx. Retried on the next natural trigger."""


class StoreClosedError(TerminalError):
    pass


class OrderTypeNotAllowedError(TerminalError):
    pass


class NotPairedError(TerminalError):
    pass
