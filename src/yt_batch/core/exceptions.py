"""Error taxonomy for the upload queue."""


class YtBatchError(Exception):
    """Base exception for the upload queue."""

    code = "YT_BATCH_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": True, "code": self.code, "message": self.message}


class ConfigurationError(YtBatchError):
    """A job was submitted with an unusable cadence or source configuration."""

    code = "CONFIGURATION_ERROR"


class JobNotFoundError(YtBatchError):
    code = "JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class InvalidJobStateError(YtBatchError):
    """The requested mutation is not legal from the job's current status."""

    code = "INVALID_STATE"

    def __init__(self, job_id: str, status: str, action: str, allowed: tuple[str, ...]):
        self.job_id = job_id
        self.status = status
        self.action = action
        self.allowed = allowed
        super().__init__(
            f"Cannot {action} job with status: {status}. "
            f"Allowed statuses: {', '.join(allowed)}."
        )


class NotAuthorizedError(YtBatchError):
    code = "NOT_AUTHORIZED"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found or unauthorized: {job_id}")


class CredentialError(YtBatchError):
    """No usable, authenticated credential could be resolved for a job."""

    code = "CREDENTIAL_ERROR"


class ManifestError(YtBatchError):
    """The job's manifest could not be read or parsed."""

    code = "MANIFEST_ERROR"


class UploadError(YtBatchError):
    """The upload API rejected or failed a request."""

    code = "UPLOAD_ERROR"
