# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""Settlement of resolved disputes.

plan() is pure: it turns a dispute, its votes and the final ruling into the
exact list of ledger movements. settle() executes a plan inside the caller's
transaction; if any movement fails the whole settlement rolls back with it.

Dispute stakes:
  - ClientWins: client gets its own stake back plus the guild's stake and
    keeps the reward; bounty fails; guild trust takes a penalty.
  - GuildWins: guild gets its own stake back plus the client's stake, and the
    client pays the reward; bounty completes.
  - Split: both stakes return to their owners, the client pays the guild's
    share of the reward per SplitShares.

The reward is never escrowed, so it is paid from the client's available
credits; a shortfall raises InsufficientFunds and rolls the settlement back.

Juror stakes: winners (voted with the ruling) get their stake back and share
the losers' stakes in proportion to what they staked.
"""

from dataclasses import dataclass, field

from protocol import (
    GUILD_LOSS_TRUST_PENALTY, ActivityType, BountyStatus, NotificationType,
    Ruling, TxType,
)
from tribunal.accounts import AccountStore
from tribunal.bounties import BountyBoard
from tribunal.db import Database
from tribunal.errors import InvariantViolation, ValidationError
from tribunal.ledger import EscrowLedger
from tribunal.log import get_logger
from tribunal.models import Dispute, TribunalVote
from tribunal.notifications import NotificationStore

log = get_logger(__name__)


@dataclass(frozen=True)
class SplitShares:
    """Reward division for a Split ruling, in whole percent summing to 100."""
    client_pct: int = 50
    guild_pct: int = 50

    def __post_init__(self):
        for pct in (self.client_pct, self.guild_pct):
            if isinstance(pct, bool) or not isinstance(pct, int) or not 0 <= pct <= 100:
                raise ValidationError(f"Split percentage must be an integer in [0, 100], got {pct!r}")
        if self.client_pct + self.guild_pct != 100:
            raise ValidationError(
                f"Split percentages must sum to 100, got {self.client_pct} + {self.guild_pct}"
            )

    @classmethod
    def normalize(cls, client, guild) -> "SplitShares":
        """Build shares from any two non-negative weights (e.g. 30/30 -> 50/50)."""
        try:
            client, guild = float(client), float(guild)
        except (TypeError, ValueError):
            return cls()
        if client < 0 or guild < 0 or client + guild <= 0:
            return cls()
        client_pct = round(100 * client / (client + guild))
        return cls(client_pct, 100 - client_pct)

    def divide(self, amount: int) -> tuple[int, int]:
        """(client_part, guild_part); the rounding remainder goes to the guild."""
        client_part = amount * self.client_pct // 100
        return client_part, amount - client_part


@dataclass(frozen=True)
class Movement:
    """One ledger call in a settlement plan."""
    op: str                 # "release", "transfer_stake" or "pay"
    account_id: str
    amount: int
    tx_type: TxType
    to_id: str | None = None
    to_type: TxType | None = None
    description: str = ""


@dataclass
class SettlementPlan:
    ruling: Ruling
    bounty_status: BountyStatus
    client_stake_payout: int
    guild_stake_payout: int
    client_reward: int
    guild_reward: int
    guild_trust_penalty: int
    juror_payouts: dict[str, int] = field(default_factory=dict)
    movements: list[Movement] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "ruling": self.ruling.value,
            "bounty_status": self.bounty_status.value,
            "client_stake_payout": self.client_stake_payout,
            "guild_stake_payout": self.guild_stake_payout,
            "client_reward": self.client_reward,
            "guild_reward": self.guild_reward,
            "guild_trust_penalty": self.guild_trust_penalty,
            "juror_payouts": dict(self.juror_payouts),
        }


def proportional_shares(pool: int, weights: dict[str, int]) -> dict[str, int]:
    """Split an integer pool by weight with largest-remainder rounding.

    Shares sum to exactly pool. Ties on remainder go to the larger weight,
    then to the lower id, so the result is deterministic.
    """
    total = sum(weights.values())
    if pool == 0 or total == 0:
        return {k: 0 for k in weights}
    shares = {k: pool * w // total for k, w in weights.items()}
    left = pool - sum(shares.values())
    order = sorted(weights, key=lambda k: (-(pool * weights[k] % total), -weights[k], k))
    for k in order[:left]:
        shares[k] += 1
    return shares


def _juror_movements(votes: list[TribunalVote], ruling: Ruling,
                     dispute_id: str) -> tuple[dict[str, int], list[Movement]]:
    winners = [v for v in votes if v.vote is ruling]
    losers = [v for v in votes if v.vote is not ruling]
    moves: list[Movement] = []
    if not winners:
        # Tie with no Split voters: nobody backed the ruling, everyone is refunded
        for v in votes:
            moves.append(Movement("release", v.guild_id, v.staked_amount, TxType.STAKE_RELEASE,
                                  description=f"Tribunal stake returned for {dispute_id}"))
        return {v.guild_id: v.staked_amount for v in votes}, moves

    pool = sum(v.staked_amount for v in losers)
    rewards = proportional_shares(pool, {v.guild_id: v.staked_amount for v in winners})
    for v in winners:
        moves.append(Movement("release", v.guild_id, v.staked_amount, TxType.STAKE_RELEASE,
                              description=f"Tribunal stake returned for {dispute_id}"))

    # Fill each winner's reward from losers' stakes in vote order
    due = [[v.guild_id, rewards[v.guild_id]] for v in winners]
    i = 0
    for loser in losers:
        remaining = loser.staked_amount
        while remaining > 0:
            while due[i][1] == 0:
                i += 1
            amount = min(remaining, due[i][1])
            moves.append(Movement("transfer_stake", loser.guild_id, amount, TxType.JUROR_FORFEIT,
                                  to_id=due[i][0], to_type=TxType.JUROR_REWARD,
                                  description=f"Tribunal stake forfeited on {dispute_id}"))
            due[i][1] -= amount
            remaining -= amount

    payouts = {v.guild_id: v.staked_amount + rewards[v.guild_id] for v in winners}
    payouts.update({v.guild_id: 0 for v in losers})
    return payouts, moves


def plan(dispute: Dispute, votes: list[TribunalVote], ruling: Ruling,
         shares: SplitShares | None = None) -> SettlementPlan:
    """Compute every movement a settlement makes. No I/O."""
    client, guild = dispute.client_id, dispute.guild_id
    c_stake, g_stake, reward = (dispute.client_stake_at_risk, dispute.guild_stake_at_risk,
                                dispute.reward_credits)
    moves: list[Movement] = []

    def release(account_id, amount, tx_type, description):
        if amount:
            moves.append(Movement("release", account_id, amount, tx_type, description=description))

    def transfer(from_id, to_id, amount, tx_type, to_type, description):
        if amount:
            moves.append(Movement("transfer_stake", from_id, amount, tx_type,
                                  to_id=to_id, to_type=to_type, description=description))

    def pay(amount, description):
        if amount:
            moves.append(Movement("pay", client, amount, TxType.BOUNTY_REWARD,
                                  to_id=guild, to_type=TxType.BOUNTY_REWARD, description=description))

    # client_reward is the part of the reward the client keeps
    if ruling is Ruling.CLIENT_WINS:
        release(client, c_stake, TxType.STAKE_RELEASE, "Dispute stake returned")
        transfer(guild, client, g_stake, TxType.DISPUTE_LOSS, TxType.DISPUTE_WIN, "Guild stake forfeited")
        result = SettlementPlan(ruling, BountyStatus.FAILED, c_stake + g_stake, 0,
                                reward, 0, GUILD_LOSS_TRUST_PENALTY)
    elif ruling is Ruling.GUILD_WINS:
        transfer(client, guild, c_stake, TxType.DISPUTE_LOSS, TxType.DISPUTE_WIN, "Client stake forfeited")
        release(guild, g_stake, TxType.STAKE_RELEASE, "Dispute stake returned")
        pay(reward, "Reward paid after dispute")
        result = SettlementPlan(ruling, BountyStatus.COMPLETED, 0, c_stake + g_stake,
                                0, reward, 0)
    elif ruling is Ruling.SPLIT:
        shares = shares or SplitShares()
        client_part, guild_part = shares.divide(reward)
        release(client, c_stake, TxType.STAKE_RELEASE, "Dispute stake returned")
        release(guild, g_stake, TxType.STAKE_RELEASE, "Dispute stake returned")
        pay(guild_part, f"Split reward ({shares.guild_pct}%)")
        result = SettlementPlan(ruling, BountyStatus.COMPLETED, c_stake, g_stake,
                                client_part, guild_part, 0)
    else:
        raise ValidationError(f"Unknown ruling {ruling!r}")

    result.juror_payouts, juror_moves = _juror_movements(votes, ruling, dispute.id)
    result.movements = moves + juror_moves
    return result


class SettlementEngine:
    """Executes settlement plans through the escrow ledger."""

    def __init__(self, db: Database, ledger: EscrowLedger, accounts: AccountStore,
                 bounties: BountyBoard, notifications: NotificationStore, penalize=None):
        self.db = db
        self.ledger = ledger
        self.accounts = accounts
        self.bounties = bounties
        self.notifications = notifications
        # penalize(account_id, points, reason, dispute_id=...) -> new score
        self.penalize = penalize

    def plan(self, dispute: Dispute, votes: list[TribunalVote], ruling: Ruling,
             shares: SplitShares | None = None) -> SettlementPlan:
        return plan(dispute, votes, ruling, shares)

    def settle(self, dispute: Dispute, votes: list[TribunalVote], ruling: Ruling,
               shares: SplitShares | None = None) -> SettlementPlan:
        """Apply a settlement. Must run inside the transaction that resolved the dispute."""
        if not self.db.in_transaction:
            raise InvariantViolation("settle() called outside a transaction")
        result = self.plan(dispute, votes, ruling, shares)
        refs = {"dispute_id": dispute.id, "bounty_id": dispute.bounty_id}

        with self.db.transaction():
            for m in result.movements:
                if m.op == "release":
                    self.ledger.release_stake(m.account_id, m.amount, m.tx_type,
                                              description=m.description, **refs)
                elif m.op == "pay":
                    self.ledger.transfer(m.account_id, m.to_id, m.amount, m.tx_type,
                                         description=m.description, **refs)
                else:
                    self.ledger.transfer_stake(m.account_id, m.to_id, m.amount, m.tx_type,
                                               to_type=m.to_type, description=m.description, **refs)

            bounty = self.bounties.get(dispute.bounty_id)
            completed_at = self.db.now() if result.bounty_status is BountyStatus.COMPLETED else None
            bounty = self.bounties.transition(bounty, result.bounty_status,
                                              guild_stake_locked=0, completed_at=completed_at)
            if result.guild_reward:
                self.accounts.add_value_cleared(dispute.guild_id, result.guild_reward)

            if result.guild_trust_penalty and self.penalize is not None:
                self.penalize(dispute.guild_id, result.guild_trust_penalty,
                              f"Lost dispute on {bounty.title}", dispute_id=dispute.id)

            self.accounts.record_activity(
                dispute.client_id, ActivityType.DISPUTE_RESOLVED,
                f"Dispute on {bounty.title} resolved: {ruling.value}",
                impact_on_credits=result.client_stake_payout - result.guild_reward,
                bounty_id=bounty.id, guild_id=dispute.guild_id, dispute_id=dispute.id, touch=False,
            )
            self.accounts.record_activity(
                dispute.guild_id, ActivityType.DISPUTE_RESOLVED,
                f"Dispute on {bounty.title} resolved: {ruling.value}",
                impact_on_trust=-result.guild_trust_penalty,
                impact_on_credits=result.guild_stake_payout + result.guild_reward,
                bounty_id=bounty.id, guild_id=dispute.guild_id, dispute_id=dispute.id, touch=False,
            )

            data = {"dispute_id": dispute.id, "bounty_id": bounty.id,
                    "bounty_title": bounty.title, "ruling": ruling.value}
            self.notifications.send(dispute.client_id, NotificationType.DISPUTE_RESOLVED, data)
            self.notifications.send(self.accounts.master_of(dispute.guild_id),
                                    NotificationType.DISPUTE_RESOLVED, data)

        log.info("settlement.applied", dispute_id=dispute.id, ruling=ruling.value,
                 bounty_status=result.bounty_status.value, movements=len(result.movements))
        return result
