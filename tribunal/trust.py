# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""Trust recomputation: read history from the store, score it, record rank events."""

from dataclasses import dataclass

from protocol import (
    ACTIVITY_WINDOW_DAYS, RANK_CHANGE_TRUST_IMPACT, TRUST_MIN, AccountKind,
    ActivityType, BountyStatus, NotificationType, RankTransition,
)
from tribunal.accounts import AccountStore
from tribunal.bounties import BountyBoard
from tribunal.db import Database
from tribunal.disputes import DisputeStateMachine
from tribunal.errors import ValidationError
from tribunal.log import get_logger
from tribunal.models import Account
from tribunal.notifications import NotificationStore
from tribunal.ranking import classify, detect_transition, thresholds_for
from tribunal.scoring import GuildHistory, UserHistory, compute_guild_trust, compute_user_trust

log = get_logger(__name__)


@dataclass(frozen=True)
class TrustUpdate:
    account_id: str
    old_score: int
    score: int
    old_rank: object
    rank: object
    transition: RankTransition

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "old_score": self.old_score,
            "score": self.score,
            "old_rank": self.old_rank.value,
            "rank": self.rank.value,
            "transition": self.transition.value,
        }


class TrustService:
    """Assembles score inputs and writes scores and ranks back."""

    def __init__(self, db: Database, accounts: AccountStore, bounties: BountyBoard,
                 disputes: DisputeStateMachine, notifications: NotificationStore):
        self.db = db
        self.accounts = accounts
        self.bounties = bounties
        self.disputes = disputes
        self.notifications = notifications

    def _window_start(self) -> float:
        return self.db.now() - ACTIVITY_WINDOW_DAYS * 86400

    def _delivered(self, user_id: str, status: BountyStatus) -> int:
        """Bounties in status that this user submitted work for."""
        row = self.db.fetchone(
            """SELECT COUNT(DISTINCT b.id) AS n FROM bounties b
               JOIN activities a ON a.bounty_id = b.id
               WHERE a.account_id = ? AND a.type = ? AND b.status = ?""",
            (user_id, ActivityType.BOUNTY_SUBMITTED.value, status.value),
        )
        return row["n"]

    def user_history(self, user_id: str) -> UserHistory:
        user = self.accounts.get_user(user_id)
        guild_id = self.accounts.guild_of(user_id)
        involved, won, lost = self.disputes.ruling_counts(client_id=user_id)
        if guild_id:
            g_involved, g_won, g_lost = self.disputes.ruling_counts(guild_id=guild_id)
            involved, won, lost = involved + g_involved, won + g_won, lost + g_lost
        return UserHistory(
            completed_bounties=self._delivered(user_id, BountyStatus.COMPLETED),
            failed_bounties=self._delivered(user_id, BountyStatus.FAILED),
            client_rating=user.client_rating,
            disputes_involved=involved,
            disputes_won=won,
            disputes_lost=lost,
            activity_30d=self.accounts.activity_count(user_id, self._window_start()),
            role=self.accounts.role_in(guild_id, user_id) if guild_id else None,
        )

    def guild_history(self, guild_id: str) -> GuildHistory:
        guild = self.accounts.get_guild(guild_id)
        roster = self.accounts.roster(guild_id)
        scores = tuple(self.accounts.get(uid).trust_score for uid in sorted(roster.all_ids()))
        involved, won, lost = self.disputes.ruling_counts(guild_id=guild_id)
        return GuildHistory(
            completed_bounties=self.bounties.count_for_guild(guild_id, BountyStatus.COMPLETED),
            failed_bounties=self.bounties.count_for_guild(guild_id, BountyStatus.FAILED),
            member_trust_scores=scores,
            disputes_involved=involved,
            disputes_won=won,
            disputes_lost=lost,
            value_cleared=guild.total_value_cleared,
            activity_30d=self.accounts.guild_activity_count(guild_id, self._window_start()),
        )

    def compute(self, account: Account) -> int:
        if account.kind is AccountKind.GUILD:
            return compute_guild_trust(self.guild_history(account.id))
        return compute_user_trust(self.user_history(account.id))

    def _write(self, account: Account, score: int, activity_type: ActivityType | None = None,
               description: str = "", dispute_id: str | None = None) -> TrustUpdate:
        rank = classify(score, thresholds_for(account.kind))
        transition = detect_transition(account.rank, rank)
        with self.db.transaction():
            self.accounts.set_trust(account.id, score, rank)
            if activity_type is not None:
                self.accounts.record_activity(account.id, activity_type, description,
                                              impact_on_trust=score - account.trust_score,
                                              dispute_id=dispute_id, touch=False)
            if transition is not RankTransition.UNCHANGED:
                promoted = transition is RankTransition.PROMOTED
                self.accounts.record_activity(
                    account.id, ActivityType.RANK_UP if promoted else ActivityType.RANK_DOWN,
                    f"Rank {'promoted' if promoted else 'demoted'} to {rank.value}",
                    impact_on_trust=RANK_CHANGE_TRUST_IMPACT if promoted else -RANK_CHANGE_TRUST_IMPACT,
                    touch=False,
                )
        update = TrustUpdate(account.id, account.trust_score, score, account.rank, rank, transition)
        if transition is not RankTransition.UNCHANGED:
            recipient = account.id if account.kind is AccountKind.USER else self.accounts.master_of(account.id)
            self.notifications.send(recipient, NotificationType.RANK_CHANGED,
                                    {"account_id": account.id, "new_rank": rank.value,
                                     "increased": transition is RankTransition.PROMOTED})
            log.info("trust.rank_changed", account_id=account.id,
                     old_rank=account.rank.value, rank=rank.value)
        return update

    def recompute(self, account_id: str) -> TrustUpdate:
        """Recalculate an account's score from its history and store score + rank."""
        with self.db.transaction():
            account = self.accounts.get(account_id)
            score = self.compute(account)
            update = self._write(account, score)
        log.info("trust.recomputed", account_id=account_id,
                 old_score=update.old_score, score=update.score)
        return update

    def apply_penalty(self, account_id: str, points: int, reason: str,
                      dispute_id: str | None = None) -> int:
        """Punitive deduction outside the formula. Clamped at zero. Returns the new score."""
        if isinstance(points, bool) or not isinstance(points, int) or points < 0:
            raise ValidationError(f"Penalty must be a non-negative integer, got {points!r}")
        with self.db.transaction():
            account = self.accounts.get(account_id)
            score = max(TRUST_MIN, account.trust_score - points)
            self._write(account, score, ActivityType.TRUST_PENALTY, reason, dispute_id)
        log.info("trust.penalty", account_id=account_id, points=points,
                 old_score=account.trust_score, score=score)
        return score

    def recompute_all(self) -> list[TrustUpdate]:
        """Users first; guild scores read their members' fresh scores."""
        updates = [self.recompute(uid) for uid in self.accounts.list_ids(AccountKind.USER)]
        updates += [self.recompute(gid) for gid in self.accounts.list_ids(AccountKind.GUILD)]
        return updates
