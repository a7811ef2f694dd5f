# errors.py
# Error type shared by the SQL layer, auth and the Flask routes


class ApiError(Exception):
    """A failure that maps onto an HTTP status and a JSON error body"""

    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"ok": False, "error": self.message}


class NotFound(ApiError):
    status_code = 404


class Forbidden(ApiError):
    status_code = 403


class Conflict(ApiError):
    status_code = 409
