"""
inrecord.errors — Domain Exceptions
====================================

Services raise plain ``ValueError`` / ``LookupError`` for ordinary bad
input and missing rows.  The subclasses below mark the cases the API maps
to a more specific HTTP status (403 / 409) or that a caller may want to
catch on their own.
"""

from __future__ import annotations


class ForbiddenError(ValueError):
    """The caller may not act on this row (HTTP 403)."""


class VoteNotAllowedError(ForbiddenError):
    """Member is not eligible to vote on this proposal."""


class DuplicateVoteError(ValueError):
    """The wallet already voted on this proposal (HTTP 409)."""


class InvalidTransitionError(ValueError):
    """A proposal or booking status change that the lifecycle forbids."""


class FundingExceededError(ValueError):
    """Funding would push a proposal past its goal."""


class BookingConflictError(ValueError):
    """Requested studio slot overlaps an existing pending/confirmed session (HTTP 409)."""


class IntegrationError(RuntimeError):
    """Base class for third-party API failures (Resend, Play.ht, OpenAI)."""


class EmailError(IntegrationError):
    pass


class TTSError(IntegrationError):
    pass


class DigestGenerationError(IntegrationError):
    pass
