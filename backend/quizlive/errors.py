"""Error taxonomy shared by the HTTP API, the Socket.IO gateway and the
session coordinator.

Every error is reported to the originating caller only. ``kind`` is the wire
name clients switch on; ``status_code`` is used by the HTTP error handler.
"""


class QuizError(Exception):
    kind = 'error'
    status_code = 500

    def __init__(self, message: str = ''):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {'success': False, 'kind': self.kind, 'error': self.message}


class NotFound(QuizError):
    kind = 'not_found'
    status_code = 404


class SessionNotFound(NotFound):
    def __init__(self, code: str):
        super().__init__(f'No live session for quiz {code}')
        self.code = code


class Unauthorized(QuizError):
    kind = 'unauthorized'
    status_code = 403


class InvalidTransition(QuizError):
    kind = 'invalid_transition'
    status_code = 409


class BadRequest(QuizError):
    kind = 'bad_request'
    status_code = 400


class Conflict(QuizError):
    kind = 'conflict'
    status_code = 409


class StoreUnavailable(QuizError):
    kind = 'store_unavailable'
    status_code = 503
