# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""Rank classification. Pure functions over threshold tables in protocol.py."""

from protocol import (
    GUILD_RANK_THRESHOLDS, USER_RANK_THRESHOLDS, AccountKind, GuildRank,
    RankTransition, UserRank,
)


def thresholds_for(kind: AccountKind) -> tuple:
    return GUILD_RANK_THRESHOLDS if kind is AccountKind.GUILD else USER_RANK_THRESHOLDS


def classify(score: int, thresholds: tuple = USER_RANK_THRESHOLDS):
    """Map a trust score to a rank.

    thresholds is a descending sequence of (rank, minimum) pairs; the first
    minimum the score meets wins. Scores below every minimum get the floor rank.
    """
    for rank, minimum in thresholds:
        if score >= minimum:
            return rank
    return thresholds[-1][0]


def ordinal(rank: UserRank | GuildRank) -> int:
    """Position of a rank from the bottom (floor rank is 0)."""
    table = GUILD_RANK_THRESHOLDS if isinstance(rank, GuildRank) else USER_RANK_THRESHOLDS
    ranks = [r for r, _ in reversed(table)]
    return ranks.index(rank)


def detect_transition(old: UserRank | GuildRank, new: UserRank | GuildRank) -> RankTransition:
    if type(old) is not type(new):
        raise TypeError(f"Cannot compare {old!r} with {new!r}")
    diff = ordinal(new) - ordinal(old)
    if diff > 0:
        return RankTransition.PROMOTED
    if diff < 0:
        return RankTransition.DEMOTED
    return RankTransition.UNCHANGED
