"""Messaging exception hierarchy.

Raised only by collaborators (REST client, token store); the caches and the
connection manager convert them into empty results and logged codes.
"""


class MessagingError(Exception):
    """Base messaging exception."""


class FetchError(MessagingError):
    """REST collaborator returned an error or ``success: false``.

    ``status_code`` is set when the server answered with an HTTP error.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
