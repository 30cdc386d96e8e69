"""
Exceptions raised by the report pipeline and the session manager.

Saying "no" to a tab close is not an exception: SessionManager.close_tab()
returns False and leaves the session untouched.
"""


class ZodiacServerError(Exception):
    """Base class for every error this package raises on purpose."""


class ChartNotFound(ZodiacServerError, FileNotFoundError):
    """No persisted chart record exists under the requested name."""

    def __init__(self, name, path=None):
        self.name = name
        self.path = path
        where = f" at {path}" if path else ""
        super().__init__(f"No chart record named '{name}'{where}")


class MalformedArguments(ZodiacServerError, ValueError):
    """Batch command-line arguments cannot be interpreted."""


class ParseContractViolation(ZodiacServerError, ValueError):
    """Engine description text does not have the expected column layout."""

    def __init__(self, message, line=None):
        self.line = line
        if line is not None:
            message = f"{message}: {line!r}"
        super().__init__(message)


class ChartUnreadable(ZodiacServerError, OSError):
    """A persisted chart record exists but cannot be read or decoded."""

    def __init__(self, name, path=None, reason=""):
        self.name = name
        self.path = path
        where = f" at {path}" if path else ""
        detail = f": {reason}" if reason else ""
        super().__init__(f"Chart record '{name}'{where} is unreadable{detail}")
