# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""Dispute storage and state machine.

Negotiation (Open) -> AIArbiter (AIAnalysis) -> Tribunal (InTribunal) -> Resolved.
Tiers only move forward. Every status change is an UPDATE guarded on the
current status, so concurrent callers cannot both advance the same dispute,
and Resolved rows are never written again.
"""

import json
import sqlite3
import uuid
from collections.abc import Callable

from protocol import (
    DISPUTABLE_STATUSES, DISPUTE_TRANSITIONS, MIN_DISPUTE_EVIDENCE_CHARS,
    MIN_FOLLOWUP_EVIDENCE_CHARS, STATUS_TIERS, ActivityType, BountyStatus,
    DisputeStatus, DisputeTier, NotificationType, PartyRole, Ruling,
)
from tribunal.accounts import AccountStore
from tribunal.bounties import BountyBoard
from tribunal.db import Database
from tribunal.errors import (
    AuthorizationError, DisputeAlreadyResolved, InvalidStateTransition,
    NotFound, ValidationError,
)
from tribunal.log import get_logger
from tribunal.models import Dispute, Evidence, TribunalVote, check_evidence
from tribunal.notifications import NotificationStore

log = get_logger(__name__)


class DisputeStateMachine:
    """SQLite-backed disputes with state machine enforcement."""

    def __init__(self, db: Database, accounts: AccountStore, bounties: BountyBoard,
                 notifications: NotificationStore):
        self.db = db
        self.accounts = accounts
        self.bounties = bounties
        self.notifications = notifications

    # --- reads ---

    def get(self, dispute_id: str) -> Dispute:
        """Dispute with its votes, read and assembled explicitly."""
        with self.db.transaction():
            row = self.db.fetchone("SELECT * FROM disputes WHERE id = ?", (dispute_id,))
            if not row:
                raise NotFound(f"Dispute {dispute_id} not found", dispute_id=dispute_id)
            return Dispute.from_row(row, self.votes(dispute_id))

    def votes(self, dispute_id: str) -> list[TribunalVote]:
        rows = self.db.fetchall(
            "SELECT * FROM tribunal_votes WHERE dispute_id = ? ORDER BY seq", (dispute_id,),
        )
        return [TribunalVote.from_row(r) for r in rows]

    def snapshot(self, dispute_id: str) -> dict:
        """Full state for display and for the arbiter prompt."""
        with self.db.transaction():
            dispute = self.get(dispute_id)
            bounty = self.bounties.get(dispute.bounty_id)
            client = self.accounts.get(dispute.client_id)
            guild = self.accounts.get(dispute.guild_id)
        state = dispute.to_dict()
        state["bounty"] = bounty.to_dict()
        state["client"] = {"id": client.id, "name": client.name,
                           "trust_score": client.trust_score, "rank": client.rank.value}
        state["guild"] = {"id": guild.id, "name": guild.name,
                          "trust_score": guild.trust_score, "rank": guild.rank.value}
        return state

    def ruling_counts(self, *, client_id: str | None = None,
                      guild_id: str | None = None) -> tuple[int, int, int]:
        """(involved, won, lost) over resolved disputes for one party.

        A Split counts as involved but neither won nor lost.
        """
        if (client_id is None) == (guild_id is None):
            raise ValueError("Pass exactly one of client_id or guild_id")
        column, party_id = ("client_id", client_id) if client_id else ("guild_id", guild_id)
        win, loss = ((Ruling.CLIENT_WINS, Ruling.GUILD_WINS) if client_id
                     else (Ruling.GUILD_WINS, Ruling.CLIENT_WINS))
        row = self.db.fetchone(
            f"""SELECT COUNT(*) AS involved,
                       COALESCE(SUM(final_ruling = ?), 0) AS won,
                       COALESCE(SUM(final_ruling = ?), 0) AS lost
                FROM disputes WHERE {column} = ? AND status = ?""",
            (win.value, loss.value, party_id, DisputeStatus.RESOLVED.value),
        )
        return row["involved"], row["won"], row["lost"]

    # --- guards ---

    def _require_party(self, dispute: Dispute, actor_id: str) -> PartyRole:
        if actor_id == dispute.client_id:
            return PartyRole.CLIENT
        if self.accounts.role_in(dispute.guild_id, actor_id) is not None:
            return PartyRole.GUILD
        raise AuthorizationError(f"{actor_id} is not a party to dispute {dispute.id}")

    @staticmethod
    def _require_open(dispute: Dispute) -> None:
        if dispute.is_resolved:
            raise DisputeAlreadyResolved(dispute.id)

    def _advance(self, dispute: Dispute, new_status: DisputeStatus, **fields) -> None:
        self._require_open(dispute)
        if new_status not in DISPUTE_TRANSITIONS[dispute.status]:
            raise InvalidStateTransition(
                f"Dispute {dispute.id}: {dispute.status.value} -> {new_status.value} not allowed",
                dispute_id=dispute.id,
            )
        sets = ["status = ?", "updated_at = ?"]
        params: list = [new_status.value, self.db.now()]
        if new_status in STATUS_TIERS:
            sets.append("tier = ?")
            params.append(STATUS_TIERS[new_status].value)
        for column, value in fields.items():
            sets.append(f"{column} = ?")
            params.append(value)
        params += [dispute.id, dispute.status.value]
        cursor = self.db.execute(
            f"UPDATE disputes SET {', '.join(sets)} WHERE id = ? AND status = ?", params,
        )
        if cursor.rowcount == 0:
            current = self.get(dispute.id)
            self._require_open(current)
            raise InvalidStateTransition(
                f"Dispute {dispute.id} changed status concurrently", dispute_id=dispute.id,
            )

    # --- operations ---

    def raise_dispute(self, actor_id: str, bounty_id: str, text: str,
                      images: list[str] | None = None, links: list[str] | None = None) -> Dispute:
        """Client contests submitted work. Snapshots stakes and reward."""
        text, images, links = check_evidence(text, images, links, MIN_DISPUTE_EVIDENCE_CHARS)
        bounty = self.bounties.get(bounty_id)
        if actor_id != bounty.client_id:
            raise AuthorizationError("Only the bounty's client can raise a dispute")
        if bounty.dispute_id:
            raise InvalidStateTransition(f"Bounty {bounty_id} already has a dispute",
                                         bounty_id=bounty_id)
        if bounty.status not in DISPUTABLE_STATUSES:
            raise InvalidStateTransition(
                f"Bounty {bounty_id} is {bounty.status.value}; only submitted work can be disputed",
                bounty_id=bounty_id,
            )
        dispute_id = f"dsp_{uuid.uuid4().hex[:12]}"
        guild_id = bounty.accepted_by_guild_id
        now = self.db.now()
        with self.db.transaction():
            try:
                self.db.execute(
                    """INSERT INTO disputes (id, bounty_id, client_id, guild_id, tier, status,
                       client_evidence, guild_evidence, client_stake_at_risk, guild_stake_at_risk,
                       reward_credits, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (dispute_id, bounty_id, bounty.client_id, guild_id,
                     DisputeTier.NEGOTIATION.value, DisputeStatus.OPEN.value,
                     json.dumps(Evidence(text, images, links).to_dict()),
                     json.dumps(Evidence().to_dict()),
                     bounty.client_stake, bounty.guild_stake_locked, bounty.reward_credits,
                     now, now),
                )
            except sqlite3.IntegrityError as e:
                raise InvalidStateTransition(f"Bounty {bounty_id} already has a dispute",
                                             bounty_id=bounty_id) from e
            self.bounties.transition(bounty, BountyStatus.DISPUTED, dispute_id=dispute_id)
            for account_id in (bounty.client_id, guild_id):
                self.accounts.record_activity(
                    account_id, ActivityType.DISPUTE_RAISED, f"Dispute raised on {bounty.title}",
                    bounty_id=bounty_id, guild_id=guild_id, dispute_id=dispute_id,
                    touch=account_id == actor_id,
                )
        self.notifications.send(self.accounts.master_of(guild_id), NotificationType.DISPUTE_RAISED,
                                {"dispute_id": dispute_id, "bounty_id": bounty_id,
                                 "bounty_title": bounty.title})
        log.info("dispute.raised", dispute_id=dispute_id, bounty_id=bounty_id,
                 client_id=bounty.client_id, guild_id=guild_id)
        return self.get(dispute_id)

    def submit_evidence(self, actor_id: str, dispute_id: str, role, text: str,
                        images: list[str] | None = None,
                        links: list[str] | None = None) -> dict:
        """Append evidence for one side. Never changes tier or status."""
        try:
            role = PartyRole(role)
        except ValueError:
            raise ValidationError(f"Party role must be 'client' or 'guild', got {role!r}") from None
        text, images, links = check_evidence(text, images, links, MIN_FOLLOWUP_EVIDENCE_CHARS)
        with self.db.transaction():
            dispute = self.get(dispute_id)
            self._require_open(dispute)
            if role is PartyRole.CLIENT and actor_id != dispute.client_id:
                raise AuthorizationError("Only the client can submit client evidence")
            if role is PartyRole.GUILD and self.accounts.role_in(dispute.guild_id, actor_id) is None:
                raise AuthorizationError("Only guild members can submit guild evidence")
            evidence = dispute.client_evidence if role is PartyRole.CLIENT else dispute.guild_evidence
            evidence.append(text, images, links)
            column = "client_evidence" if role is PartyRole.CLIENT else "guild_evidence"
            cursor = self.db.execute(
                f"UPDATE disputes SET {column} = ?, updated_at = ? WHERE id = ? AND status != ?",
                (json.dumps(evidence.to_dict()), self.db.now(), dispute_id,
                 DisputeStatus.RESOLVED.value),
            )
            if cursor.rowcount == 0:
                raise DisputeAlreadyResolved(dispute_id)
            self.accounts.touch(actor_id)
        log.info("dispute.evidence", dispute_id=dispute_id, role=role.value)
        return {"dispute_id": dispute_id, "role": role.value, "status": dispute.status.value,
                "tier": dispute.tier.value}

    def request_ai_analysis(self, actor_id: str, dispute_id: str) -> Dispute:
        """Negotiation -> AIArbiter. The analysis itself is advisory and external."""
        with self.db.transaction():
            dispute = self.get(dispute_id)
            self._require_open(dispute)
            self._require_party(dispute, actor_id)
            self._advance(dispute, DisputeStatus.AI_ANALYSIS)
        log.info("dispute.ai_analysis", dispute_id=dispute_id, actor_id=actor_id)
        return self.get(dispute_id)

    def record_ai_suggestion(self, dispute_id: str, analysis: dict) -> bool:
        """Store the arbiter's advisory output. Ignored once resolved."""
        cursor = self.db.execute(
            "UPDATE disputes SET ai_suggestion = ?, updated_at = ? WHERE id = ? AND status != ?",
            (json.dumps(analysis), self.db.now(), dispute_id, DisputeStatus.RESOLVED.value),
        )
        return cursor.rowcount > 0

    def escalate(self, actor_id: str, dispute_id: str,
                 juror_picker: Callable[[Dispute], list[str]]) -> list[str]:
        """AIArbiter -> Tribunal. Jurors are picked once and stored with the move.

        If the picker raises (InsufficientJurors), nothing changes.
        """
        with self.db.transaction():
            dispute = self.get(dispute_id)
            self._require_open(dispute)
            self._require_party(dispute, actor_id)
            if dispute.tier is not DisputeTier.AI_ARBITER:
                raise InvalidStateTransition(
                    f"Dispute {dispute_id} must pass AI arbitration before the tribunal",
                    dispute_id=dispute_id,
                )
            jurors = list(juror_picker(dispute))
            self._advance(dispute, DisputeStatus.IN_TRIBUNAL, tribunal_jurors=json.dumps(jurors))
            bounty = self.bounties.get(dispute.bounty_id)
        data = {"dispute_id": dispute_id, "bounty_id": dispute.bounty_id,
                "bounty_title": bounty.title, "tier": DisputeTier.TRIBUNAL.value}
        for user_id in (dispute.client_id, self.accounts.master_of(dispute.guild_id)):
            self.notifications.send(user_id, NotificationType.DISPUTE_ESCALATED, data)
        for juror_id in jurors:
            self.notifications.send(self.accounts.master_of(juror_id),
                                    NotificationType.TRIBUNAL_VOTE_NEEDED, data)
        log.info("dispute.escalated", dispute_id=dispute_id, jurors=jurors)
        return jurors

    def mark_resolved(self, dispute_id: str, ruling: Ruling) -> bool:
        """InTribunal -> Resolved. False if another caller got there first."""
        now = self.db.now()
        cursor = self.db.execute(
            """UPDATE disputes SET status = ?, final_ruling = ?, resolved_at = ?, updated_at = ?
               WHERE id = ? AND status = ?""",
            (DisputeStatus.RESOLVED.value, ruling.value, now, now, dispute_id,
             DisputeStatus.IN_TRIBUNAL.value),
        )
        return cursor.rowcount > 0
