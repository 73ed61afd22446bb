"""Exception hierarchy for CommentScope.

Errors fall into four families that decide how the pipeline reacts:

* ``InputError`` - bad arguments, rejected immediately and never retried.
* ``TransientRemoteError`` - network failures, non-zero platform codes and
  malformed model output. Retried at the call site, then recorded per item.
* ``ConfigurationError`` - missing credentials. Fails the task at once.
* ``FatalTaskError`` - a whole stage produced nothing usable. The task is
  moved to ``failed`` with the message persisted.
"""

from typing import Optional


class CommentScopeError(Exception):
    """Base class for all CommentScope errors."""


class InputError(CommentScopeError, ValueError):
    """Raised for empty or malformed caller input."""


class ConfigurationError(CommentScopeError):
    """Raised when required credentials or settings are missing."""


class TransientRemoteError(CommentScopeError):
    """A remote call failed in a way that may succeed on retry."""


class PlatformAPIError(TransientRemoteError):
    """The platform answered with a non-zero application code or bad HTTP status."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class SigningKeyError(TransientRemoteError):
    """The signing keys could not be fetched from the platform."""


class LLMResponseError(TransientRemoteError):
    """The model call failed or returned output that could not be parsed."""


class FatalTaskError(CommentScopeError):
    """A stage failed completely and the task cannot continue."""


class TaskCancelledError(CommentScopeError):
    """Cooperative cancellation was requested while work was in flight."""

    def __init__(self, message: str = "task cancelled", partial=None):
        super().__init__(message)
        self.partial = partial


class InvalidTransitionError(CommentScopeError):
    """A task stage change would move backwards or leave a terminal stage."""
