# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""Bounty lifecycle with escrow.

Posting locks the client's stake; accepting locks the guild's stake. The
reward stays in the client's available balance until the work is accepted,
and is paid from there. Status changes are compare-and-swap on the current status so two
callers racing on one bounty cannot both win.
"""

import json
import uuid

from protocol import (
    BOUNTY_TRANSITIONS, DISPUTABLE_STATUSES, MIN_BOUNTY_REWARD, ActivityType,
    BountyStatus, GuildRole, NotificationType, TxType,
)
from tribunal.accounts import AccountStore
from tribunal.db import Database
from tribunal.errors import (
    AuthorizationError, InvalidStateTransition, NotFound, ValidationError,
)
from tribunal.ledger import EscrowLedger
from tribunal.log import get_logger
from tribunal.models import Bounty, Proof, check_urls
from tribunal.notifications import NotificationStore

log = get_logger(__name__)


def _check_credits(value, what: str, minimum: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValidationError(f"{what} must be an integer >= {minimum}")
    return value


class BountyBoard:
    """Posting, accepting, delivering and reviewing bounties."""

    def __init__(self, db: Database, accounts: AccountStore, ledger: EscrowLedger,
                 notifications: NotificationStore):
        self.db = db
        self.accounts = accounts
        self.ledger = ledger
        self.notifications = notifications

    def get(self, bounty_id: str) -> Bounty:
        row = self.db.fetchone("SELECT * FROM bounties WHERE id = ?", (bounty_id,))
        if not row:
            raise NotFound(f"Bounty {bounty_id} not found", bounty_id=bounty_id)
        return Bounty.from_row(row)

    def transition(self, bounty: Bounty, new_status: BountyStatus, **fields) -> Bounty:
        """Move a bounty to new_status if legal and nobody moved it first.

        Extra keyword fields are written in the same UPDATE.
        """
        if new_status not in BOUNTY_TRANSITIONS[bounty.status]:
            raise InvalidStateTransition(
                f"Bounty {bounty.id}: {bounty.status.value} -> {new_status.value} not allowed",
                bounty_id=bounty.id,
            )
        sets = ["status = ?", "updated_at = ?"]
        params: list = [new_status.value, self.db.now()]
        for column, value in fields.items():
            sets.append(f"{column} = ?")
            params.append(value)
        params += [bounty.id, bounty.status.value]
        cursor = self.db.execute(
            f"UPDATE bounties SET {', '.join(sets)} WHERE id = ? AND status = ?", params,
        )
        if cursor.rowcount == 0:
            raise InvalidStateTransition(
                f"Bounty {bounty.id} changed status concurrently", bounty_id=bounty.id,
            )
        return self.get(bounty.id)

    def post(self, client_id: str, title: str, reward_credits: int, client_stake: int = 0,
             guild_stake_required: int = 0, min_guild_trust: int = 0) -> Bounty:
        """Publish a bounty, locking the client stake."""
        self.accounts.get_user(client_id)
        if not title or not title.strip():
            raise ValidationError("Title is required")
        _check_credits(reward_credits, "Reward", MIN_BOUNTY_REWARD)
        _check_credits(client_stake, "Client stake")
        _check_credits(guild_stake_required, "Guild stake")
        _check_credits(min_guild_trust, "Minimum guild trust")
        bounty_id = f"bty_{uuid.uuid4().hex[:12]}"
        now = self.db.now()
        with self.db.transaction():
            self.db.execute(
                """INSERT INTO bounties (id, client_id, title, reward_credits, client_stake,
                   guild_stake_required, min_guild_trust, status, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (bounty_id, client_id, title.strip(), reward_credits, client_stake,
                 guild_stake_required, min_guild_trust, BountyStatus.OPEN.value, now, now),
            )
            if client_stake:
                self.ledger.lock_stake(client_id, client_stake, TxType.BOUNTY_STAKE,
                                       description=f"Stake for bounty {title.strip()}",
                                       bounty_id=bounty_id)
            self.accounts.record_activity(client_id, ActivityType.BOUNTY_POSTED,
                                          f"Posted bounty {title.strip()}",
                                          impact_on_credits=-client_stake,
                                          bounty_id=bounty_id)
        log.info("bounty.posted", bounty_id=bounty_id, client_id=client_id, reward=reward_credits)
        return self.get(bounty_id)

    def accept(self, actor_id: str, bounty_id: str, guild_id: str) -> Bounty:
        """Guild master takes the bounty on behalf of the guild, locking its stake."""
        bounty = self.get(bounty_id)
        guild = self.accounts.get_guild(guild_id)
        if self.accounts.role_in(guild_id, actor_id) is not GuildRole.MASTER:
            raise AuthorizationError("Only the guild master can accept bounties")
        if self.accounts.guild_of(bounty.client_id) == guild_id:
            raise AuthorizationError("A guild cannot accept its own member's bounty")
        if guild.trust_score < bounty.min_guild_trust:
            raise AuthorizationError(
                f"Guild trust {guild.trust_score} below required {bounty.min_guild_trust}"
            )
        with self.db.transaction():
            bounty = self.transition(bounty, BountyStatus.ACCEPTED,
                                     accepted_by_guild_id=guild_id,
                                     guild_stake_locked=bounty.guild_stake_required)
            if bounty.guild_stake_required:
                self.ledger.lock_stake(guild_id, bounty.guild_stake_required, TxType.BOUNTY_STAKE,
                                       description=f"Guild stake for {bounty.title}",
                                       bounty_id=bounty_id)
            self.accounts.record_activity(guild_id, ActivityType.BOUNTY_ACCEPTED,
                                          f"Accepted bounty {bounty.title}",
                                          impact_on_credits=-bounty.guild_stake_required,
                                          bounty_id=bounty_id, guild_id=guild_id)
            self.accounts.touch(actor_id)
        self.notifications.send(bounty.client_id, NotificationType.BOUNTY_ACCEPTED,
                                {"bounty_id": bounty_id, "bounty_title": bounty.title,
                                 "guild_name": guild.name})
        log.info("bounty.accepted", bounty_id=bounty_id, guild_id=guild_id)
        return bounty

    def _require_guild_member(self, bounty: Bounty, actor_id: str) -> str:
        guild_id = bounty.accepted_by_guild_id
        if not guild_id or self.accounts.role_in(guild_id, actor_id) is None:
            raise AuthorizationError("Only members of the accepting guild can do this")
        return guild_id

    def start(self, actor_id: str, bounty_id: str) -> Bounty:
        bounty = self.get(bounty_id)
        self._require_guild_member(bounty, actor_id)
        return self.transition(bounty, BountyStatus.IN_PROGRESS)

    def submit_proof(self, actor_id: str, bounty_id: str, text: str,
                     images: list[str] | None = None, links: list[str] | None = None) -> Bounty:
        bounty = self.get(bounty_id)
        guild_id = self._require_guild_member(bounty, actor_id)
        proof = Proof(text=(text or "").strip(), images=check_urls(images, "images"),
                      links=check_urls(links, "links"))
        if proof.is_empty:
            raise ValidationError("Proof of work is required")
        with self.db.transaction():
            bounty = self.transition(bounty, BountyStatus.SUBMITTED,
                                     proof=json.dumps(proof.to_dict()))
            self.accounts.record_activity(actor_id, ActivityType.BOUNTY_SUBMITTED,
                                          f"Submitted work for {bounty.title}",
                                          bounty_id=bounty_id, guild_id=guild_id)
        guild = self.accounts.get(guild_id)
        self.notifications.send(bounty.client_id, NotificationType.BOUNTY_SUBMITTED,
                                {"bounty_id": bounty_id, "bounty_title": bounty.title,
                                 "guild_name": guild.name})
        return bounty

    def review(self, actor_id: str, bounty_id: str, accept: bool) -> Bounty:
        """Client verdict on submitted work.

        Accept releases both stakes and pays the reward from the client's
        available credits; a client who cannot cover it gets InsufficientFunds
        and nothing changes. Reject moves a Submitted bounty to UnderReview, from where the client
        can still accept or raise a dispute.
        """
        bounty = self.get(bounty_id)
        if actor_id != bounty.client_id:
            raise AuthorizationError("Only the bounty's client can review it")
        if bounty.status not in DISPUTABLE_STATUSES:
            raise InvalidStateTransition(f"Bounty {bounty_id} is {bounty.status.value}, not reviewable")
        if not accept:
            return self.transition(bounty, BountyStatus.UNDER_REVIEW)
        guild_id = bounty.accepted_by_guild_id
        with self.db.transaction():
            bounty = self.transition(bounty, BountyStatus.COMPLETED, guild_stake_locked=0,
                                     completed_at=self.db.now())
            refs = {"bounty_id": bounty_id}
            if bounty.client_stake:
                self.ledger.release_stake(bounty.client_id, bounty.client_stake,
                                          description="Client stake returned", **refs)
            self.ledger.transfer(bounty.client_id, guild_id, bounty.reward_credits,
                                 TxType.BOUNTY_REWARD,
                                 description=f"Reward for {bounty.title}", **refs)
            if bounty.guild_stake_required:
                self.ledger.release_stake(guild_id, bounty.guild_stake_required,
                                          description="Guild stake returned", **refs)
            self.accounts.add_value_cleared(guild_id, bounty.reward_credits)
            self.accounts.record_activity(bounty.client_id, ActivityType.BOUNTY_COMPLETED,
                                          f"Accepted delivery of {bounty.title}",
                                          bounty_id=bounty_id, guild_id=guild_id)
            self.accounts.record_activity(guild_id, ActivityType.BOUNTY_COMPLETED,
                                          f"Completed {bounty.title}",
                                          impact_on_credits=bounty.reward_credits,
                                          bounty_id=bounty_id, guild_id=guild_id)
        self.notifications.send(self.accounts.master_of(guild_id), NotificationType.BOUNTY_COMPLETED,
                                {"bounty_id": bounty_id, "bounty_title": bounty.title,
                                 "reward": bounty.reward_credits})
        log.info("bounty.completed", bounty_id=bounty_id, guild_id=guild_id)
        return bounty

    def cancel(self, actor_id: str, bounty_id: str) -> Bounty:
        """Client withdraws an unaccepted bounty; the stake is refunded."""
        bounty = self.get(bounty_id)
        if actor_id != bounty.client_id:
            raise AuthorizationError("Only the bounty's client can cancel it")
        with self.db.transaction():
            bounty = self.transition(bounty, BountyStatus.CANCELLED)
            if bounty.client_stake:
                self.ledger.release_stake(bounty.client_id, bounty.client_stake, TxType.BOUNTY_REFUND,
                                          description=f"Refund for cancelled {bounty.title}",
                                          bounty_id=bounty_id)
        log.info("bounty.cancelled", bounty_id=bounty_id)
        return bounty

    def count_for_guild(self, guild_id: str, status: BountyStatus) -> int:
        row = self.db.fetchone(
            "SELECT COUNT(*) AS n FROM bounties WHERE accepted_by_guild_id = ? AND status = ?",
            (guild_id, status.value),
        )
        return row["n"]
