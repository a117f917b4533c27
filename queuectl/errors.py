"""
Error taxonomy.

Command failures are not errors here: the runner reports them as data and
the worker routes them through the retry policy.
"""


class QueueError(Exception):
    """Base class for all queuectl errors."""


class ValidationError(QueueError):
    """Malformed input at the administrative boundary (e.g. missing command)."""


class NotFoundError(QueueError):
    """An operation referenced a job or dead letter entry that does not exist."""


class StoreError(QueueError):
    """A transaction or storage failure in the durable store."""
