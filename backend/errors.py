class CareError(Exception):
    """Base class for errors the API reports back to the caller."""
    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationError(CareError):
    status_code = 400


class NotFoundError(CareError):
    status_code = 404


class InvalidTransitionError(CareError):
    status_code = 409
