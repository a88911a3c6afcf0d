"""Error taxonomy for the tailer: startup failures, per-source failures, delivery failures."""


class TailerError(Exception):
    """Base class for every error raised by the tailer."""


class ConfigurationError(TailerError):
    """Missing or invalid settings. Fatal at startup."""


class CredentialError(TailerError):
    """Blank or unparseable token, or a required claim is absent. Fatal at startup."""


class SourceAccessError(TailerError):
    """A watch could not be established for a source."""


class StreamError(TailerError):
    """A tail stream failed mid-flight. Terminates only that session."""


class TransientSinkError(TailerError):
    """A batch insert failed and may be retried."""


class DeliveryExhaustedError(TailerError):
    """A batch could not be delivered within the retry budget. Its records are lost."""

    def __init__(self, table: str, batch_size: int, attempts: int, last_error: Exception | None = None):
        super().__init__(
            f"Gave up delivering {batch_size} record(s) to {table!r} "
            f"after {attempts} attempt(s): {last_error}"
        )
        self.table = table
        self.batch_size = batch_size
        self.attempts = attempts
        self.last_error = last_error
