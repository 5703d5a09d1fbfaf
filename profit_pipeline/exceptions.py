"""
Pipeline Exceptions

Error taxonomy shared by the ingestion, metrics and cleanup stages. None of
these escape the pipeline boundary: every job converts them into a JobResult.
"""

from typing import List, Optional


class PipelineError(Exception):
    """Base class for all pipeline errors"""


# =============================================================================
# SOURCE (UPSTREAM API) ERRORS
# =============================================================================

class SourceError(PipelineError):
    """Upstream API call failed and should not be retried"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientSourceError(SourceError):
    """Upstream failure worth retrying (network, rate limit, 5xx)"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class SourceTimeoutError(TransientSourceError):
    """A single page fetch exceeded its timeout"""


# =============================================================================
# NORMALIZATION ERRORS
# =============================================================================

class NormalizationError(PipelineError):
    """Upstream record failed schema validation"""

    def __init__(self, entity: str, upstream_id: Optional[str], errors: List[str]):
        self.entity = entity
        self.upstream_id = upstream_id
        self.errors = errors
        super().__init__(
            f"Invalid {entity} record {upstream_id or '<unknown>'}: {'; '.join(errors)}"
        )


# =============================================================================
# STORE ERRORS
# =============================================================================

class StoreError(PipelineError):
    """Persistence layer failure"""


class DuplicateKeyError(StoreError):
    """Unique (shop, upstream_id) constraint violated on insert"""


class TenantNotFoundError(StoreError):
    """No tenant record exists for the shop"""


class CredentialError(PipelineError):
    """Access credential missing, or could not be encrypted/decrypted"""


# =============================================================================
# ORCHESTRATION ERRORS
# =============================================================================

class IngestionFailed(PipelineError):
    """A load-bearing entity type could not be ingested"""

    def __init__(self, entity: str, cause: Exception):
        self.entity = entity
        self.cause = cause
        super().__init__(f"{entity} ingestion failed: {cause}")


class IngestionDeadlineExceeded(PipelineError):
    """The overall ingestion deadline expired"""


class JobFailed(PipelineError):
    """A job returned an unsuccessful result; raised by retrying schedulers"""

    def __init__(self, job: str, tenant: str, error: Optional[str]):
        self.job = job
        self.tenant = tenant
        self.error = error
        super().__init__(f"{job} failed for {tenant}: {error}")
