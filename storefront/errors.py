"""Exceptions raised by the service layer.

Views let these propagate; the handler registered in ``create_app`` rolls
back the session and turns them into ``{"error": ...}`` JSON responses.
"""


class ServiceError(Exception):
    status_code = 400

    def __init__(self, message, status_code=None, **extra):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_dict(self):
        payload = {'error': self.message}
        payload.update(self.extra)
        return payload


class ValidationError(ServiceError):
    status_code = 400


class InsufficientStock(ValidationError):
    pass


class InvalidPromoCode(ValidationError):
    pass


class InsufficientBalance(ValidationError):
    pass


class InvalidTransition(ValidationError):
    pass


class Forbidden(ServiceError):
    status_code = 403


class NotFound(ServiceError):
    status_code = 404


class Conflict(ServiceError):
    status_code = 409
