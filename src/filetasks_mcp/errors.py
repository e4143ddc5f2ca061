"""Error taxonomy for server interactions."""

NETWORK = "network"
BUSINESS = "business"
SIZE_LIMIT = "size_limit"
AUTH = "auth"
SERVER = "server"


class ApiError(Exception):
    """Base class for every failure talking to the file server."""

    kind = SERVER

    def __init__(self, message: str, status: int | None = None):
        self.message = message
        self.status = status
        super().__init__(message)


class TransportError(ApiError):
    """No response was received."""

    kind = NETWORK

    def __init__(self, message: str = "Network connection failed, check the network and retry"):
        super().__init__(message)


class BusinessError(ApiError):
    """The server answered but flagged the request as failed."""

    kind = BUSINESS


class PayloadTooLargeError(ApiError):
    kind = SIZE_LIMIT

    def __init__(self, message: str = "File size exceeds the server limit", status: int | None = 413):
        super().__init__(message, status)


class AuthenticationExpired(ApiError):
    """Session is no longer valid; handled by the session-expiry subscriber."""

    kind = AUTH

    def __init__(self, message: str = "Session expired, please log in again"):
        super().__init__(message, 401)


class ServerError(ApiError):
    kind = SERVER
