"""Exceptions shared by the maintenance jobs."""


class MaintenanceError(Exception):
    """Base exception for maintenance worker errors"""
    pass


class JobTimeoutError(MaintenanceError):
    """Raised when a job body does not finish within its time budget"""

    def __init__(self, job_name: str, timeout_seconds: float):
        self.job_name = job_name
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Job '{job_name}' timeout after {timeout_seconds:g}s")


class StorageError(MaintenanceError):
    """Raised when the object store rejects or fails an operation"""
    pass


class UnknownJobError(MaintenanceError):
    """Raised when a job name is not registered"""
    pass


class AttemptAbandonedError(MaintenanceError):
    """Raised inside a job body whose attempt was given up by the executor"""
    pass
