"""
Exceptions shared by the sync and routing services.
"""


class ConfigurationError(Exception):
    """A tenant is unknown or its registry entry is missing a URL or credential."""


class PersistenceError(Exception):
    """A tenant store rejected a read or write, or could not be reached."""

    def __init__(self, message, db=None, status_code=None):
        self.db = db
        self.status_code = status_code
        super().__init__(message)
