# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""Error taxonomy for the tribunal engine.

Every failure the engine reports derives from EngineError. The HTTP layer maps
each class to a status code; InvariantViolation is never shown verbatim.
"""


class EngineError(Exception):
    """Base class for all engine errors."""

    status_code = 500
    public = True

    def __init__(self, message: str = "", **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(EngineError, ValueError):
    """Malformed input. Caller's fault, never retried."""

    status_code = 400


class NotFound(EngineError, LookupError):
    status_code = 404


class AuthorizationError(EngineError):
    """Wrong party attempting an action (e.g. a non-master casting a guild vote)."""

    status_code = 403


class InsufficientFunds(EngineError):
    """Business-rule rejection: not enough available credits."""

    status_code = 409

    def __init__(self, account_id: str, needed: int, available: int):
        super().__init__(
            f"Account {account_id} has {available} credits available, needs {needed}",
            account_id=account_id, needed=needed, available=available,
        )
        self.account_id = account_id
        self.needed = needed
        self.available = available


class InvalidStateTransition(EngineError):
    status_code = 409


class DisputeAlreadyResolved(InvalidStateTransition):
    """Resolved disputes accept no evidence, votes, or tier changes."""

    def __init__(self, dispute_id: str):
        super().__init__(f"Dispute {dispute_id} is already resolved", dispute_id=dispute_id)
        self.dispute_id = dispute_id


class InsufficientJurors(EngineError):
    """Escalation blocked; retry once more guilds qualify."""

    status_code = 409

    def __init__(self, eligible: int, required: int):
        super().__init__(
            f"Only {eligible} eligible juror guilds, {required} required",
            eligible=eligible, required=required,
        )
        self.eligible = eligible
        self.required = required


class InvariantViolation(EngineError):
    """Internal bug. Logged as fatal, surfaced to users as a generic error."""

    status_code = 500
    public = False
