"""Error kinds raised by the checklist engine.

Every error carries the HTTP status the API answers with, so the Flask error
handler in app.py can render any of them the same way.
"""


class ChecklistError(Exception):
    status_code = 400
    message = 'Request failed'

    def __init__(self, message=None, status_code=None):
        if message is not None:
            self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class InvalidDate(ChecklistError):
    message = 'Invalid date format'


class InvalidPayload(ChecklistError):
    message = 'Invalid request payload'


class UnsupportedFormat(ChecklistError):
    message = 'Export format must be csv or pdf'


class Unauthorized(ChecklistError):
    status_code = 401
    message = 'Authentication required.'


class Forbidden(ChecklistError):
    status_code = 403
    message = 'Access denied. Admin privileges required.'


class WriteWindowClosed(ChecklistError):
    status_code = 403
    message = 'Checklist entries can only be changed for today'


class UnknownTask(ChecklistError):
    status_code = 404
    message = 'Task not found'


class EmptyExport(ChecklistError):
    status_code = 404
    message = 'No data available for export'


class Conflict(ChecklistError):
    status_code = 409
    message = 'Record already exists'


class TransportError(ChecklistError):
    status_code = 502
    message = 'Checklist service is unavailable'


class SaveFailed(TransportError):
    status_code = 500
    message = 'Failed to save checklist'

    def __init__(self, message=None, status_code=None, failed=None):
        super().__init__(message, status_code)
        self.failed = failed or []


# Client-side only: raised by the reconciliation loop, never sent over HTTP.

class ValidationFailed(ChecklistError):
    message = 'Staff name is required for completed tasks'

    def __init__(self, errors):
        super().__init__()
        self.errors = dict(errors)


class ChecklistReadOnly(ChecklistError):
    status_code = 403
    message = 'Only today\'s checklist can be edited'
