class GameError(Exception):
    """Base class for errors rendered to clients as ``{"error": message}``."""

    status_code = 400
    message = 'Request failed'

    def __init__(self, message=None, status_code=None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'error': self.message}


class AuthRequired(GameError):
    status_code = 401
    message = 'Authentication required: missing or invalid token'


class InvalidUsername(GameError):
    message = 'Username must be between 3 and 20 characters'


class InvalidNumber(GameError):
    message = 'Number must be between 1 and 9'


class InvalidFilter(GameError):
    message = 'Unknown leaderboard filter'


class SessionFull(GameError):
    status_code = 409
    message = 'Session is full'


class SessionNotActive(GameError):
    status_code = 409
    message = 'No active session'


class AlreadyActive(GameError):
    status_code = 409
    message = 'You are already playing in another session'


class NotAParticipant(GameError):
    status_code = 404
    message = 'You are not a participant in this session'


class StoreConflict(GameError):
    """A guarded write lost a race. Callers re-read instead of surfacing it."""

    status_code = 409
    message = 'Concurrent update, please retry'
