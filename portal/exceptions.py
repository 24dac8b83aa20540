"""
Error taxonomy for the consultant portal

Every failure that reaches a user carries a status code and a message that
can be shown as-is.
"""
from fastapi import status


class PortalError(Exception):
    """Base class for all portal errors"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Portal Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SubscriptionError(PortalError):
    """A live query could not be established or its stream failed"""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error = "Subscription Failed"


class LookupFailure(PortalError):
    """A single foreign-record lookup failed during enrichment"""
    status_code = status.HTTP_502_BAD_GATEWAY
    error = "Lookup Failed"


class NotFoundError(PortalError):
    """Referenced document does not exist"""
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not Found"


class PreconditionError(PortalError):
    """Command rejected before any write was attempted"""
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Not Allowed"


class MutationError(PortalError):
    """A write to the backing store failed"""
    status_code = status.HTTP_502_BAD_GATEWAY
    error = "Update Failed"


class ConflictError(MutationError):
    """Conditional write rejected because the stored value changed"""
    status_code = status.HTTP_409_CONFLICT
    error = "Conflict"


class StoreTimeoutError(MutationError):
    """A bounded store round-trip did not settle in time"""
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    error = "Timeout"
