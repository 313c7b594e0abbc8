class BookHiveError(Exception):
    """Base class for failures that map onto a client-facing response."""
    status_code = 500
    message = 'An unexpected error occurred'

    def __init__(self, message=None, status_code=None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        if status_code:
            self.status_code = status_code


class ValidationError(BookHiveError):
    status_code = 400
    message = 'Invalid request'


class NotAuthenticated(BookHiveError):
    status_code = 401
    message = 'Not authenticated'


class Forbidden(BookHiveError):
    status_code = 403
    message = 'Forbidden'


class BookNotFound(BookHiveError):
    status_code = 404
    message = 'Book not found'


class UserNotFound(BookHiveError):
    status_code = 404
    message = 'User not found'


class PdfNotFound(BookHiveError):
    status_code = 404
    message = 'No PDF found'


class BookNotAvailable(BookHiveError):
    status_code = 400
    message = 'Book not available'


class AlreadyBorrowed(BookHiveError):
    status_code = 400
    message = 'This user already borrowed this book'


class NoActiveLoan(BookHiveError):
    status_code = 400
    message = 'No active loan for this user'


class EmailTaken(BookHiveError):
    status_code = 400
    message = 'Email already registered.'


class ConfigError(BookHiveError):
    status_code = 500
    message = 'Server config error. Contact admin.'
