"""Errors raised by job handlers and the queue."""


class JobError(Exception):
    """Base class for job failures that should be recorded on the job row."""


class NotFoundError(JobError):
    """A row referenced by a job payload no longer exists."""

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class PayloadValidationError(JobError):
    """A job payload does not match the schema of its job type."""
