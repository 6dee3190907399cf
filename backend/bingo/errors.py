"""Error taxonomy shared by the HTTP API and the realtime gateway.

Every per-action failure is a ``GameError``; handlers report it to the acting
client and keep going. Only ``AuthError`` during the Socket.IO handshake refuses
the connection.
"""

from typing import Any, Dict


class GameError(Exception):
    code = 'error'
    status_code = 400

    def __init__(self, message: str = None, **details: Any):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload = {'code': self.code, 'message': self.message}
        payload.update(self.details)
        return payload


class AuthError(GameError):
    """Authentication failed"""
    code = 'auth_error'
    status_code = 401


class NotFoundError(GameError):
    """Game not found"""
    code = 'not_found'
    status_code = 404


class NotAuthorizedError(GameError):
    """You are not allowed to do that"""
    code = 'not_authorized'
    status_code = 403


class InvalidActionError(GameError):
    """Invalid action"""
    code = 'invalid_action'
    status_code = 400


class ConflictError(GameError):
    """Conflicting state"""
    code = 'conflict'
    status_code = 409


class ExpiredError(InvalidActionError):
    """Invitation has expired"""
    code = 'expired'


class DuplicateNumberError(ConflictError):
    """Number has already been called"""
    code = 'duplicate_number'
