# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""Trust score formulas for users and guilds.

Pure functions of a history snapshot: no I/O, same input gives same score.
Scores are rounded and clamped to [TRUST_MIN, TRUST_MAX].

User (max 1000 before penalties):
    success rate x3          up to 300 (50% when nothing finished yet)
    completions / 100        up to 200
    client rating x100       up to 100
    dispute win rate x200    up to 200 (0.5 with no disputes)
    activity (30d) / 50      up to 100
    guild role weight x100   up to 100
    - 20 per dispute lost

Guild:
    mission success rate x3  up to 300
    avg member trust x0.75   up to 750 (100 with no members)
    dispute win rate x200    up to 200
    value cleared / 10000    up to 150
    activity (30d) / 100     up to 100
    - 15 per failed bounty, - 20 per dispute lost
"""

import math
from dataclasses import dataclass, field

from protocol import ROLE_WEIGHTS, TRUST_MAX, TRUST_MIN, GuildRole
from tribunal.errors import ValidationError


@dataclass(frozen=True)
class UserHistory:
    completed_bounties: int = 0
    failed_bounties: int = 0
    client_rating: float = 0.7
    disputes_involved: int = 0
    disputes_won: int = 0
    disputes_lost: int = 0
    activity_30d: int = 0
    role: GuildRole | None = None


@dataclass(frozen=True)
class GuildHistory:
    completed_bounties: int = 0
    failed_bounties: int = 0
    member_trust_scores: tuple[int, ...] = field(default_factory=tuple)
    disputes_involved: int = 0
    disputes_won: int = 0
    disputes_lost: int = 0
    value_cleared: int = 0
    activity_30d: int = 0


def _check_counts(history, names: tuple[str, ...]) -> None:
    for name in names:
        value = getattr(history, name)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(f"{name} must be a non-negative integer, got {value!r}")
    if history.disputes_won + history.disputes_lost > history.disputes_involved:
        raise ValidationError("Disputes won + lost exceeds disputes involved")


def clamp(score: float) -> int:
    # half-up rounding
    return max(TRUST_MIN, min(TRUST_MAX, math.floor(score + 0.5)))


def _success_rate(completed: int, failed: int) -> float:
    finished = completed + failed
    return completed / finished * 100 if finished else 50.0


def _win_rate(won: int, involved: int) -> float:
    return won / involved if involved else 0.5


def compute_user_trust(history: UserHistory) -> int:
    _check_counts(history, ("completed_bounties", "failed_bounties", "disputes_involved",
                            "disputes_won", "disputes_lost", "activity_30d"))
    if not 0 <= history.client_rating <= 1:
        raise ValidationError(f"client_rating must be in [0, 1], got {history.client_rating}")
    if history.role not in ROLE_WEIGHTS:
        raise ValidationError(f"Unknown guild role {history.role!r}")

    score = (
        _success_rate(history.completed_bounties, history.failed_bounties) * 3
        + min(history.completed_bounties / 100, 1) * 200
        + history.client_rating * 100
        + _win_rate(history.disputes_won, history.disputes_involved) * 200
        + min(history.activity_30d / 50, 1) * 100
        + ROLE_WEIGHTS[history.role] * 100
        - 20 * history.disputes_lost
    )
    return clamp(score)


def compute_guild_trust(history: GuildHistory) -> int:
    _check_counts(history, ("completed_bounties", "failed_bounties", "disputes_involved",
                            "disputes_won", "disputes_lost", "activity_30d", "value_cleared"))
    members = history.member_trust_scores
    for s in members:
        if not TRUST_MIN <= s <= TRUST_MAX:
            raise ValidationError(f"Member trust {s} outside [{TRUST_MIN}, {TRUST_MAX}]")
    avg_member_trust = sum(members) / len(members) if members else 100

    score = (
        _success_rate(history.completed_bounties, history.failed_bounties) * 3
        + avg_member_trust * 0.75
        + _win_rate(history.disputes_won, history.disputes_involved) * 200
        + min(history.value_cleared / 10000, 1) * 150
        + min(history.activity_30d / 100, 1) * 100
        - 15 * history.failed_bounties
        - 20 * history.disputes_lost
    )
    return clamp(score)
