"""
queuectl

A persistence-backed background job queue. Workers atomically claim shell
commands from a shared store, execute them, and record success, retry with
exponential backoff, or move them to a dead letter queue.
"""

__version__ = "1.0.0"
