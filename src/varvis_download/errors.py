"""
Exception taxonomy shared by the download, restoration and extraction code.

Per-entry failures during a resume pass are caught at the entry boundary and
turned into "retain for retry"; only unexpected exceptions escape to the CLI.
"""


class VarvisDownloadError(Exception):
    """Base class for all errors raised by varvis_download."""


class TransientNetworkError(VarvisDownloadError):
    """Connection problems, timeouts, HTTP 429 and 5xx. Retried by the HTTP client."""


class RemoteApiError(VarvisDownloadError):
    """A non-retryable API failure: non-2xx status, `success=false` payload or a request error retries will not fix."""

    def __init__(self, message: str, status_code: int | None = None, error_message_id: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_message_id = error_message_id


class StateCorruptionError(VarvisDownloadError):
    """The restoration state file is not a readable JSON array, or one of its entries is invalid."""


class SubprocessFailureError(VarvisDownloadError):
    """An external tool (samtools, tabix, bgzip) could not be started or exited non-zero."""

    def __init__(self, tool: str, returncode: int | None, stderr: str = '') -> None:
        if returncode is None:
            message = f'{tool} could not be started'
        else:
            message = f'{tool} exited with code {returncode}'
        if stderr:
            message = f'{message}. Stderr: {stderr}'
        super().__init__(message)
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr


class PreconditionError(VarvisDownloadError):
    """A requirement for the requested operation is missing, e.g. the remote index for a ranged download."""
