"""
Typed errors raised by the orchestration core.

Routes translate these into HTTP responses; services raise them and let them
propagate.
"""
from typing import Optional


class ProviderError(Exception):
    """Non-2xx response from an LLM vendor."""

    def __init__(self, provider: str, status_code: int, body: str):
        super().__init__(f"{provider} returned HTTP {status_code}")
        self.provider = provider
        self.status_code = status_code
        self.body = body


class SetupRequiredError(Exception):
    """Missing or invalid credentials / configuration. Never retried."""

    def __init__(self, message: str, service_type: Optional[str] = None):
        super().__init__(message)
        self.service_type = service_type


class IterationLimitError(Exception):
    """The tool dispatch loop hit its iteration ceiling without a final answer."""

    def __init__(self, max_iterations: int):
        super().__init__(f"Too many tool call iterations (limit {max_iterations})")
        self.max_iterations = max_iterations


class FilterCompilerError(Exception):
    """Ticket vendor rejected a compiled query or a catalog/page fetch failed."""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.query = query
        self.status_code = status_code
        self.body = body

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": str(self),
            "query": self.query,
            "vendor_status": self.status_code,
            "vendor_body": self.body,
        }


class ServiceNotFoundError(Exception):
    """Unknown ticket service id, service type or connection."""


class JobNotFoundError(Exception):
    """No job with the given id is visible to the caller."""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class WorkerDispatchError(Exception):
    """The background worker trigger failed or was not acknowledged."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
