# errors.py


class ScheduleError(Exception):
    """Base class for errors the API turns into client responses."""
    status_code = 400


class ValidationError(ScheduleError):
    status_code = 400


class PermissionDenied(ScheduleError):
    status_code = 403


class NotFoundError(ScheduleError):
    status_code = 404


class StoreError(ScheduleError):
    """Raised when the document store cannot be read or written."""
    status_code = 500
