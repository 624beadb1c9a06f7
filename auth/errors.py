from __future__ import annotations


class DoorFlowAuthError(RuntimeError):
    status_code = 401


class AuthenticationRequiredError(DoorFlowAuthError):
    def __init__(
        self, message: str = "Not authenticated. Please connect to DoorFlow first."
    ) -> None:
        super().__init__(message)


class CSRFStateMismatchError(DoorFlowAuthError):
    status_code = 400

    def __init__(self, message: str = "Invalid state parameter. Possible CSRF attack.") -> None:
        super().__init__(message)


class RefreshFailedError(DoorFlowAuthError):
    def __init__(
        self,
        message: str = (
            "Token refresh failed. Please reconnect to DoorFlow. "
            "This can happen if access was revoked or tokens expired."
        ),
    ) -> None:
        super().__init__(message)


class TokenExchangeError(DoorFlowAuthError):
    status_code = 502
