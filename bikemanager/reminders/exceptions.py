class ReminderError(Exception):
    """Base class for reminder pipeline errors."""


class UnknownJobTypeError(ReminderError):
    """A queued job names a kind this queue cannot execute. Never retried."""

    def __init__(self, job_type: str):
        super().__init__(f"Unknown email job type: {job_type}")
        self.job_type = job_type


class NotifierError(ReminderError):
    """The email provider refused or failed the send. Retried by the queue."""


class QueueBackendUnavailable(ReminderError):
    """The durable queue backend could not be reached."""
