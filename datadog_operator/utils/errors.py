import json
import kopf
import kubernetes_asyncio

_NOT_FOUND = "notfound"

#: HTTP statuses that are worth retrying even though they are 4xx.
TRANSIENT_CLIENT_STATUSES = (408, 409, 429)


class ReconcileError(Exception):
    """Base class for errors raised by a reconcile pass.

    ``fatal`` errors are not retried automatically: they need a change
    to the DatadogAgent resource (or to the cluster) before the next pass
    can succeed.
    """

    fatal: bool = True
    reason: str = "ReconcileFailed"


class ConfigurationError(ReconcileError):
    """The DatadogAgent spec is missing a section that should have been defaulted."""

    reason = "InvalidConfiguration"


class RenameConflictError(ReconcileError):
    """A workload name recorded in status differs from the desired one."""

    reason = "RenameRejected"


class OwnershipConflictError(ReconcileError):
    """A dependent object exists but is controlled by another owner."""

    reason = "OwnershipConflict"


class BuilderError(ReconcileError):
    """A desired manifest could not be built from the DatadogAgent spec."""

    reason = "BuildFailed"


class GateNotReadyError(ReconcileError):
    """The cluster agent has no available replica yet."""

    fatal = False
    reason = "ClusterAgentNotReady"


def _reason(ex: kubernetes_asyncio.client.ApiException) -> str:
    try:
        err = json.loads(ex.body) if ex.body else {}
    except (json.JSONDecodeError, TypeError):
        return ""
    return (err.get("reason") or "").lower()


def not_found_error(ex: kubernetes_asyncio.client.ApiException) -> bool:
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        return False
    return ex.status == 404 or _reason(ex) == _NOT_FOUND


def is_transient(ex: Exception) -> bool:
    """True for API errors a later pass can reasonably expect to clear."""
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        return False
    status = ex.status or 0
    return status >= 500 or status in TRANSIENT_CLIENT_STATUSES


def convert_api_exception(
    ex: kubernetes_asyncio.client.ApiException, permanent: bool = None, delay: float = 30
):
    """
    Convert kubernetes ApiException to a Kopf-friendly exception.

    Args:
        ex: The ApiException to convert
        permanent: If True, raises PermanentError (won't retry). If False, raises TemporaryError (will retry).
                   If None, automatically determines based on status code.
        delay: Retry delay handed to kopf for temporary errors.

    Raises:
        kopf.TemporaryError or kopf.PermanentError with serializable error details
    """
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        raise ex

    error_msg = f"Kubernetes API error ({ex.status}): {ex.reason}"

    try:
        if ex.body:
            body = json.loads(ex.body)
            if "message" in body:
                error_msg = f"{error_msg} - {body['message']}"
    except (json.JSONDecodeError, AttributeError, TypeError):
        pass

    # 4xx errors are permanent, except timeouts, conflicts and throttling
    if permanent is None:
        is_permanent = not is_transient(ex) and 400 <= (ex.status or 0) < 500
    else:
        is_permanent = permanent

    if is_permanent:
        raise kopf.PermanentError(error_msg)
    else:
        raise kopf.TemporaryError(error_msg, delay=delay)
