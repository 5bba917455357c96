# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""Users, guilds, guild roles and the activity history.

Balances are never written here; opening credits and treasury deposits go
through the EscrowLedger.
"""

import sqlite3
import uuid

from protocol import (
    DEFAULT_CLIENT_RATING, DEFAULT_GUILD_TRUST, DEFAULT_USER_TRUST,
    JUROR_ELIGIBLE_RANKS, JUROR_MIN_TRUST, TRUST_MAX, TRUST_MIN, WELCOME_BONUS,
    AccountKind, ActivityType, GuildRole, TxType,
)
from tribunal.db import Database
from tribunal.errors import AuthorizationError, NotFound, ValidationError
from tribunal.ledger import EscrowLedger
from tribunal.log import get_logger
from tribunal.models import Account, Activity, GuildRoster
from tribunal.ranking import classify, thresholds_for

log = get_logger(__name__)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class AccountStore:
    """SQLite-backed accounts, guild membership and activity history."""

    def __init__(self, db: Database, ledger: EscrowLedger):
        self.db = db
        self.ledger = ledger

    def _insert(self, account_id: str, kind: AccountKind, name: str,
                trust_score: int, client_rating: float) -> None:
        if not name or not name.strip():
            raise ValidationError("Name is required")
        if not TRUST_MIN <= trust_score <= TRUST_MAX:
            raise ValidationError(f"Trust score {trust_score} outside [{TRUST_MIN}, {TRUST_MAX}]")
        now = self.db.now()
        rank = classify(trust_score, thresholds_for(kind))
        try:
            self.db.execute(
                """INSERT INTO accounts (id, kind, name, trust_score, rank, client_rating,
                   last_active, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (account_id, kind.value, name.strip(), trust_score, rank.value,
                 client_rating, now, now),
            )
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Account {account_id} already exists") from e

    def create_user(self, name: str, welcome_bonus: int = WELCOME_BONUS,
                    account_id: str | None = None,
                    trust_score: int = DEFAULT_USER_TRUST,
                    client_rating: float = DEFAULT_CLIENT_RATING) -> Account:
        """Open a user account and credit the welcome bonus."""
        if not 0 <= client_rating <= 1:
            raise ValidationError(f"Client rating {client_rating} outside [0, 1]")
        account_id = account_id or _new_id("usr")
        with self.db.transaction():
            self._insert(account_id, AccountKind.USER, name, trust_score, client_rating)
            if welcome_bonus:
                self.ledger.credit(account_id, welcome_bonus, TxType.WELCOME_BONUS,
                                   description="Welcome bonus")
            self.record_activity(account_id, ActivityType.ACCOUNT_CREATED,
                                 f"Account created for {name}",
                                 impact_on_credits=welcome_bonus)
        log.info("account.user_created", account_id=account_id)
        return self.get(account_id)

    def create_guild(self, name: str, master_id: str, account_id: str | None = None,
                     trust_score: int = DEFAULT_GUILD_TRUST) -> Account:
        """Found a guild with master_id as its single master."""
        self.get_user(master_id)
        account_id = account_id or _new_id("gld")
        with self.db.transaction():
            if self.guild_of(master_id):
                raise ValidationError(f"User {master_id} already belongs to a guild")
            self._insert(account_id, AccountKind.GUILD, name, trust_score, DEFAULT_CLIENT_RATING)
            self._add_member_row(account_id, master_id, GuildRole.MASTER)
            self.record_activity(master_id, ActivityType.GUILD_JOINED,
                                 f"Founded guild {name}", guild_id=account_id)
        log.info("account.guild_created", guild_id=account_id, master_id=master_id)
        return self.get(account_id)

    def _add_member_row(self, guild_id: str, user_id: str, role: GuildRole) -> None:
        try:
            self.db.execute(
                "INSERT INTO guild_members (guild_id, user_id, role, joined_at) VALUES (?, ?, ?, ?)",
                (guild_id, user_id, role.value, self.db.now()),
            )
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"User {user_id} already belongs to a guild") from e

    def add_member(self, guild_id: str, user_id: str, role: GuildRole = GuildRole.MEMBER) -> None:
        if role is GuildRole.MASTER:
            raise ValidationError("A guild has exactly one master")
        guild = self.get_guild(guild_id)
        self.get_user(user_id)
        with self.db.transaction():
            self._add_member_row(guild_id, user_id, role)
            self.record_activity(user_id, ActivityType.GUILD_JOINED,
                                 f"Joined {guild.name} as {role.value}", guild_id=guild_id)

    def deposit_to_guild(self, user_id: str, guild_id: str, amount: int):
        """Move a member's available credits into the guild treasury."""
        if self.role_in(guild_id, user_id) is None:
            raise AuthorizationError(f"User {user_id} is not a member of {guild_id}")
        return self.ledger.transfer(user_id, guild_id, amount, TxType.GUILD_DEPOSIT,
                                    description="Guild treasury deposit")

    # --- lookups ---

    def get(self, account_id: str) -> Account:
        row = self.db.fetchone("SELECT * FROM accounts WHERE id = ?", (account_id,))
        if not row:
            raise NotFound(f"Account {account_id} not found", account_id=account_id)
        return Account.from_row(row)

    def get_user(self, user_id: str) -> Account:
        account = self.get(user_id)
        if account.kind is not AccountKind.USER:
            raise ValidationError(f"Account {user_id} is not a user")
        return account

    def get_guild(self, guild_id: str) -> Account:
        account = self.get(guild_id)
        if account.kind is not AccountKind.GUILD:
            raise ValidationError(f"Account {guild_id} is not a guild")
        return account

    def list_ids(self, kind: AccountKind | None = None) -> list[str]:
        if kind is None:
            rows = self.db.fetchall("SELECT id FROM accounts ORDER BY id")
        else:
            rows = self.db.fetchall("SELECT id FROM accounts WHERE kind = ? ORDER BY id", (kind.value,))
        return [r["id"] for r in rows]

    def guild_of(self, user_id: str) -> str | None:
        row = self.db.fetchone("SELECT guild_id FROM guild_members WHERE user_id = ?", (user_id,))
        return row["guild_id"] if row else None

    def role_in(self, guild_id: str, user_id: str) -> GuildRole | None:
        row = self.db.fetchone(
            "SELECT role FROM guild_members WHERE guild_id = ? AND user_id = ?",
            (guild_id, user_id),
        )
        return GuildRole(row["role"]) if row else None

    def master_of(self, guild_id: str) -> str:
        row = self.db.fetchone(
            "SELECT user_id FROM guild_members WHERE guild_id = ? AND role = ?",
            (guild_id, GuildRole.MASTER.value),
        )
        if not row:
            raise NotFound(f"Guild {guild_id} has no master", guild_id=guild_id)
        return row["user_id"]

    def roster(self, guild_id: str) -> GuildRoster:
        rows = self.db.fetchall(
            "SELECT user_id, role FROM guild_members WHERE guild_id = ?", (guild_id,),
        )
        roster = GuildRoster(guild_id=guild_id, master_id="")
        for r in rows:
            role = GuildRole(r["role"])
            if role is GuildRole.MASTER:
                roster.master_id = r["user_id"]
            elif role is GuildRole.OFFICER:
                roster.officer_ids.add(r["user_id"])
            else:
                roster.member_ids.add(r["user_id"])
        if not roster.master_id:
            raise NotFound(f"Guild {guild_id} not found", guild_id=guild_id)
        return roster

    def eligible_jurors(self, exclude: set[str] | None = None) -> list[str]:
        """Guild ids qualified to sit on a tribunal, sorted for stable sampling."""
        ranks = sorted(r.value for r in JUROR_ELIGIBLE_RANKS)
        placeholders = ", ".join("?" for _ in ranks)
        rows = self.db.fetchall(
            f"SELECT id FROM accounts WHERE kind = ? AND trust_score >= ? "
            f"AND rank IN ({placeholders}) ORDER BY id",
            (AccountKind.GUILD.value, JUROR_MIN_TRUST, *ranks),
        )
        exclude = exclude or set()
        return [r["id"] for r in rows if r["id"] not in exclude]

    # --- trust fields (written by TrustService and the decay sweep) ---

    def set_trust(self, account_id: str, score: int, rank, expected: int | None = None) -> bool:
        """Write score and rank. With expected, only if the score is still that value."""
        sql = "UPDATE accounts SET trust_score = ?, rank = ? WHERE id = ?"
        params: list = [score, rank.value, account_id]
        if expected is not None:
            sql += " AND trust_score = ?"
            params.append(expected)
        return self.db.execute(sql, params).rowcount > 0

    def add_value_cleared(self, guild_id: str, amount: int) -> None:
        self.db.execute(
            "UPDATE accounts SET total_value_cleared = total_value_cleared + ? WHERE id = ?",
            (amount, guild_id),
        )

    # --- activity ---

    def touch(self, account_id: str, now: float | None = None) -> None:
        self.db.execute(
            "UPDATE accounts SET last_active = ? WHERE id = ?",
            (self.db.now() if now is None else now, account_id),
        )

    def record_activity(self, account_id: str, activity_type: ActivityType, description: str,
                        impact_on_trust: int = 0, impact_on_credits: int = 0,
                        bounty_id: str | None = None, guild_id: str | None = None,
                        dispute_id: str | None = None, touch: bool = True) -> Activity:
        """Append a history event. touch=False for system-driven events (decay, penalties)."""
        now = self.db.now()
        with self.db.transaction():
            self.db.execute(
                """INSERT INTO activities (account_id, type, bounty_id, guild_id, dispute_id,
                   description, impact_on_trust, impact_on_credits, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (account_id, activity_type.value, bounty_id, guild_id, dispute_id,
                 description, impact_on_trust, impact_on_credits, now),
            )
            if touch:
                self.touch(account_id, now)
        return Activity(
            account_id=account_id, type=activity_type, description=description,
            impact_on_trust=impact_on_trust, impact_on_credits=impact_on_credits,
            bounty_id=bounty_id, guild_id=guild_id, dispute_id=dispute_id, created_at=now,
        )

    def activities(self, account_id: str, since: float | None = None) -> list[Activity]:
        sql = "SELECT * FROM activities WHERE account_id = ?"
        params: list = [account_id]
        if since is not None:
            sql += " AND created_at >= ?"
            params.append(since)
        rows = self.db.fetchall(sql + " ORDER BY id", params)
        return [Activity.from_row(r) for r in rows]

    def activity_count(self, account_id: str, since: float) -> int:
        row = self.db.fetchone(
            "SELECT COUNT(*) AS n FROM activities WHERE account_id = ? AND created_at >= ?",
            (account_id, since),
        )
        return row["n"]

    def guild_activity_count(self, guild_id: str, since: float) -> int:
        """Events by or about a guild (its own rows plus members' rows tagged with it)."""
        row = self.db.fetchone(
            "SELECT COUNT(*) AS n FROM activities "
            "WHERE (account_id = ? OR guild_id = ?) AND created_at >= ?",
            (guild_id, guild_id, since),
        )
        return row["n"]
