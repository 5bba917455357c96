# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""Tribunal: juror selection, staked voting, plurality ruling, settlement.

Each vote locks the juror's stake and is stored in one transaction. When the
last juror votes, finalize() flips the dispute InTribunal -> Resolved with a
compare-and-swap and settles in the same transaction. Only the caller whose
UPDATE hits a row settles; everyone else sees the existing ruling.
"""

import random
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass

from protocol import (
    JUROR_COUNT, MIN_TRIBUNAL_STAKE, ActivityType, DisputeStatus, GuildRole,
    Ruling, TxType,
)
from tribunal.accounts import AccountStore
from tribunal.db import Database
from tribunal.disputes import DisputeStateMachine
from tribunal.errors import (
    AuthorizationError, DisputeAlreadyResolved, EngineError, InsufficientJurors,
    InvalidStateTransition, ValidationError,
)
from tribunal.ledger import EscrowLedger
from tribunal.log import get_logger
from tribunal.models import Dispute, TribunalVote
from tribunal.settlement import SettlementEngine

log = get_logger(__name__)


@dataclass
class VoteReceipt:
    dispute_id: str
    guild_id: str
    vote: Ruling
    staked_amount: int
    votes_cast: int
    votes_required: int
    final_ruling: Ruling | None = None
    settlement_error: str | None = None

    @property
    def quorum_reached(self) -> bool:
        return self.votes_cast >= self.votes_required

    def to_dict(self) -> dict:
        return {
            "dispute_id": self.dispute_id,
            "guild_id": self.guild_id,
            "vote": self.vote.value,
            "staked_amount": self.staked_amount,
            "votes_cast": self.votes_cast,
            "votes_required": self.votes_required,
            "final_ruling": self.final_ruling.value if self.final_ruling else None,
            "settlement_error": self.settlement_error,
        }


def tally(votes: list[TribunalVote]) -> Ruling:
    """Plurality: the strictly highest count wins, any tie is a Split."""
    counts = Counter(v.vote for v in votes)
    if not counts:
        return Ruling.SPLIT
    top = max(counts.values())
    leaders = [ruling for ruling, n in counts.items() if n == top]
    if len(leaders) == 1:
        return leaders[0]
    return Ruling.SPLIT


class TribunalCoordinator:
    """Runs the Tribunal tier of a dispute."""

    def __init__(self, db: Database, accounts: AccountStore, ledger: EscrowLedger,
                 disputes: DisputeStateMachine, settlement: SettlementEngine,
                 rng: random.Random | None = None,
                 on_settled: Callable[[Dispute, Ruling], None] | None = None):
        self.db = db
        self.accounts = accounts
        self.ledger = ledger
        self.disputes = disputes
        self.settlement = settlement
        self.rng = rng or random.Random()
        self.on_settled = on_settled

    def select_jurors(self, dispute: Dispute) -> list[str]:
        """Sample JUROR_COUNT eligible guilds, excluding both parties' guilds."""
        exclude = {dispute.guild_id}
        client_guild = self.accounts.guild_of(dispute.client_id)
        if client_guild:
            exclude.add(client_guild)
        eligible = self.accounts.eligible_jurors(exclude)
        if len(eligible) < JUROR_COUNT:
            log.warning("tribunal.insufficient_jurors", dispute_id=dispute.id,
                        eligible=len(eligible), required=JUROR_COUNT)
            raise InsufficientJurors(len(eligible), JUROR_COUNT)
        return self.rng.sample(eligible, JUROR_COUNT)

    def cast_vote(self, actor_id: str, dispute_id: str, guild_id: str, vote,
                  stake: int) -> VoteReceipt:
        """Record a juror guild's staked vote; settle when the last vote lands."""
        try:
            vote = Ruling(vote)
        except ValueError:
            raise ValidationError(f"Vote must be one of {[r.value for r in Ruling]}, got {vote!r}") from None
        if isinstance(stake, bool) or not isinstance(stake, int) or stake < MIN_TRIBUNAL_STAKE:
            raise ValidationError(f"Tribunal stake must be an integer >= {MIN_TRIBUNAL_STAKE}")

        with self.db.transaction():
            dispute = self.disputes.get(dispute_id)
            if dispute.is_resolved:
                raise DisputeAlreadyResolved(dispute_id)
            if dispute.status is not DisputeStatus.IN_TRIBUNAL:
                raise InvalidStateTransition(f"Dispute {dispute_id} is not in tribunal",
                                             dispute_id=dispute_id)
            if guild_id not in dispute.tribunal_jurors:
                raise AuthorizationError(f"Guild {guild_id} is not a juror on {dispute_id}")
            if self.accounts.role_in(guild_id, actor_id) is not GuildRole.MASTER:
                raise AuthorizationError("Only the guild master can cast the guild's vote")
            if any(v.guild_id == guild_id for v in dispute.tribunal_votes):
                raise InvalidStateTransition(f"Guild {guild_id} already voted on {dispute_id}",
                                             dispute_id=dispute_id)

            self.ledger.lock_stake(guild_id, stake, TxType.TRIBUNAL_STAKE,
                                   description=f"Tribunal stake on {dispute_id}",
                                   dispute_id=dispute_id, bounty_id=dispute.bounty_id)
            seq = len(dispute.tribunal_votes) + 1
            self.db.execute(
                """INSERT INTO tribunal_votes (dispute_id, guild_id, vote, staked_amount, seq, cast_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (dispute_id, guild_id, vote.value, stake, seq, self.db.now()),
            )
            self.accounts.record_activity(guild_id, ActivityType.TRIBUNAL_VOTE,
                                          f"Voted {vote.value} on {dispute_id}",
                                          impact_on_credits=-stake, guild_id=guild_id,
                                          dispute_id=dispute_id)
            self.accounts.touch(actor_id)
            required = len(dispute.tribunal_jurors)

        log.info("tribunal.vote", dispute_id=dispute_id, guild_id=guild_id,
                 vote=vote.value, stake=stake, seq=seq, required=required)
        receipt = VoteReceipt(dispute_id, guild_id, vote, stake, seq, required)
        if receipt.quorum_reached:
            try:
                receipt.final_ruling = self.finalize(dispute_id)
            except EngineError as e:
                # Vote stays recorded; dispute stays InTribunal for retry
                log.error("tribunal.settlement_failed", dispute_id=dispute_id, error=str(e))
                receipt.settlement_error = e.message if e.public else "internal error"
            except Exception:
                # Storage failures roll back the same way; the vote is already committed
                log.exception("tribunal.settlement_failed", dispute_id=dispute_id)
                receipt.settlement_error = "internal error"
        return receipt

    def finalize(self, dispute_id: str) -> Ruling | None:
        """Resolve and settle if every juror has voted.

        Returns the final ruling, or None while votes are outstanding. Safe to
        call repeatedly and concurrently: settlement happens at most once.
        """
        with self.db.transaction():
            dispute = self.disputes.get(dispute_id)
            if dispute.is_resolved:
                return dispute.final_ruling
            if dispute.status is not DisputeStatus.IN_TRIBUNAL:
                raise InvalidStateTransition(f"Dispute {dispute_id} is not in tribunal",
                                             dispute_id=dispute_id)
            votes = dispute.tribunal_votes
            if len({v.guild_id for v in votes}) < len(dispute.tribunal_jurors):
                return None
            ruling = tally(votes)
            if not self.disputes.mark_resolved(dispute_id, ruling):
                return self.disputes.get(dispute_id).final_ruling
            self.settlement.settle(dispute, votes, ruling)

        log.info("tribunal.resolved", dispute_id=dispute_id, ruling=ruling.value,
                 votes=[v.vote.value for v in votes])
        if self.on_settled is not None:
            self.on_settled(dispute, ruling)
        return ruling
