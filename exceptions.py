"""
Custom exception classes for the dealflow orchestrator.
"""


class PipelineError(Exception):
    """Base exception class for orchestration-related errors."""
    pass


class InputError(PipelineError):
    """Exception raised for input-related errors."""
    pass


class DealNotFoundError(InputError):
    """Exception raised when a deal id is unknown to the deal store."""
    pass


class RunNotFoundError(InputError):
    """Exception raised when a run id is unknown for a deal."""
    pass


class WorkerError(PipelineError):
    """Exception raised when a worker invocation fails or times out."""
    pass


class CollaboratorError(PipelineError):
    """Exception raised when an external collaborator query fails."""
    pass


class StorageError(PipelineError):
    """Exception raised when the event log or run records cannot be written."""
    pass
