from fastapi import HTTPException, status


class PortalError(HTTPException):
    """
    Base class for every error the portal reports to a caller.

    The response body is ``{"detail": {"code": ..., "message": ..., **extra}}``
    where ``code`` is the class name, so clients can branch on it.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Request could not be completed"

    def __init__(self, message: str | None = None, headers: dict[str, str] | None = None, **extra):
        self.message = message or type(self).message
        self.extra = extra
        detail = {"code": self.code, "message": self.message, **extra}
        super().__init__(status_code=type(self).status_code, detail=detail, headers=headers)

    @property
    def code(self) -> str:
        return type(self).__name__


# Validation errors

class ValidationFailed(PortalError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Request validation failed"

    def __init__(self, errors: list[dict[str, str]], message: str | None = None):
        super().__init__(message, errors=errors)


# State errors

class TokenNotFound(PortalError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Verification token not found"


class TokenExpired(PortalError):
    status_code = status.HTTP_410_GONE
    message = "Verification token has expired"


class TokenAlreadyUsed(PortalError):
    status_code = status.HTTP_410_GONE
    message = "Verification token has already been used or replaced"


class AccountNotFound(PortalError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Account not found"


class InvalidStateTransition(PortalError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Account is not awaiting review"


class AlreadyDecided(PortalError):
    status_code = status.HTTP_409_CONFLICT
    message = "Account has already been decided"


class MatrixConflict(PortalError):
    status_code = status.HTTP_409_CONFLICT
    message = "Permission matrix was changed by someone else"


# Authorization errors

class InvalidCredentials(PortalError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Incorrect login or password"


class EmailNotVerified(PortalError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Email address has not been verified"

    def __init__(self, login: str):
        super().__init__(login=login, resend_path="/resend-verification")


class PendingApproval(PortalError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Account is waiting for administrator approval"


class RegistrationRejected(PortalError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Registration was rejected"


class NotApproved(PortalError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Account is not approved for sign-in"


class Forbidden(PortalError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Not enough privileges"


class InvalidSessionToken(PortalError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Could not validate credentials"

    def __init__(self, message: str | None = None):
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})


# Infrastructure errors

class StoreUnavailable(PortalError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    message = "Account store is unavailable, try again later"
