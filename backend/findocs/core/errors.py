"""Exception taxonomy shared by services and the HTTP layer.

Services raise these; ``findocs.main`` turns them into ``{"error": message}``
responses with the matching status code.
"""


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    """Missing field, disallowed file type or size, wrong document state."""
    status_code = 400


class NotFoundError(AppError):
    status_code = 404


class UpstreamServiceError(AppError):
    """The generation service or the object store failed."""
    status_code = 500


class StructuredOutputError(Exception):
    """Model output did not contain a usable JSON object."""
