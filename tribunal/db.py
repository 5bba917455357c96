# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""SQLite-backed persistent store shared by every engine component.

One connection, one re-entrant lock. Every statement runs under the lock, and
transaction() gives all-or-nothing semantics across components: nested calls
join the outermost transaction, so a settlement that touches the ledger, the
dispute and the bounty commits or rolls back as one unit.
"""

import sqlite3
import threading
import time
from contextlib import contextmanager

from tribunal.log import get_logger

log = get_logger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    name TEXT NOT NULL,
    available_credits INTEGER NOT NULL DEFAULT 0 CHECK (available_credits >= 0),
    staked_credits INTEGER NOT NULL DEFAULT 0 CHECK (staked_credits >= 0),
    trust_score INTEGER NOT NULL CHECK (trust_score BETWEEN 0 AND 1000),
    rank TEXT NOT NULL,
    client_rating REAL NOT NULL DEFAULT 0.7,
    total_value_cleared INTEGER NOT NULL DEFAULT 0,
    last_active REAL NOT NULL,
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_accounts_kind_trust ON accounts(kind, trust_score);

CREATE TABLE IF NOT EXISTS guild_members (
    guild_id TEXT NOT NULL REFERENCES accounts(id),
    user_id TEXT NOT NULL UNIQUE REFERENCES accounts(id),
    role TEXT NOT NULL,
    joined_at REAL NOT NULL,
    PRIMARY KEY (guild_id, user_id)
);

CREATE TABLE IF NOT EXISTS bounties (
    id TEXT PRIMARY KEY,
    client_id TEXT NOT NULL REFERENCES accounts(id),
    title TEXT NOT NULL,
    reward_credits INTEGER NOT NULL,
    client_stake INTEGER NOT NULL,
    guild_stake_required INTEGER NOT NULL,
    min_guild_trust INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL,
    accepted_by_guild_id TEXT REFERENCES accounts(id),
    guild_stake_locked INTEGER NOT NULL DEFAULT 0,
    dispute_id TEXT,
    proof TEXT,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    completed_at REAL
);
CREATE INDEX IF NOT EXISTS idx_bounties_status ON bounties(status);
CREATE INDEX IF NOT EXISTS idx_bounties_guild ON bounties(accepted_by_guild_id);

CREATE TABLE IF NOT EXISTS disputes (
    id TEXT PRIMARY KEY,
    bounty_id TEXT NOT NULL UNIQUE REFERENCES bounties(id),
    client_id TEXT NOT NULL,
    guild_id TEXT NOT NULL,
    tier TEXT NOT NULL,
    status TEXT NOT NULL,
    client_evidence TEXT NOT NULL,
    guild_evidence TEXT NOT NULL,
    client_stake_at_risk INTEGER NOT NULL,
    guild_stake_at_risk INTEGER NOT NULL,
    reward_credits INTEGER NOT NULL,
    tribunal_jurors TEXT NOT NULL DEFAULT '[]',
    ai_suggestion TEXT,
    final_ruling TEXT,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    resolved_at REAL
);
CREATE INDEX IF NOT EXISTS idx_disputes_status ON disputes(status);

CREATE TABLE IF NOT EXISTS tribunal_votes (
    dispute_id TEXT NOT NULL REFERENCES disputes(id),
    guild_id TEXT NOT NULL REFERENCES accounts(id),
    vote TEXT NOT NULL,
    staked_amount INTEGER NOT NULL,
    seq INTEGER NOT NULL,
    cast_at REAL NOT NULL,
    PRIMARY KEY (dispute_id, guild_id)
);

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id TEXT NOT NULL REFERENCES accounts(id),
    type TEXT NOT NULL,
    amount INTEGER NOT NULL,
    available_delta INTEGER NOT NULL,
    staked_delta INTEGER NOT NULL,
    available_after INTEGER NOT NULL,
    staked_after INTEGER NOT NULL,
    external INTEGER NOT NULL DEFAULT 0,
    bounty_id TEXT,
    dispute_id TEXT,
    description TEXT NOT NULL,
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_transactions_account ON transactions(account_id, created_at);

CREATE TABLE IF NOT EXISTS activities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id TEXT NOT NULL REFERENCES accounts(id),
    type TEXT NOT NULL,
    bounty_id TEXT,
    guild_id TEXT,
    dispute_id TEXT,
    description TEXT NOT NULL,
    impact_on_trust INTEGER NOT NULL DEFAULT 0,
    impact_on_credits INTEGER NOT NULL DEFAULT 0,
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_activities_account ON activities(account_id, created_at);
CREATE INDEX IF NOT EXISTS idx_activities_guild ON activities(guild_id, created_at);

CREATE TABLE IF NOT EXISTS notifications (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    type TEXT NOT NULL,
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    data TEXT NOT NULL DEFAULT '{}',
    read INTEGER NOT NULL DEFAULT 0,
    created_at REAL NOT NULL,
    expires_at REAL
);
CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, created_at);
"""


class Database:
    """Shared SQLite connection with a re-entrant transaction boundary."""

    def __init__(self, db_path: str = ":memory:", clock=time.time):
        # isolation_level=None: we issue BEGIN/COMMIT ourselves
        self.db = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self.db.row_factory = sqlite3.Row
        self.clock = clock
        self._lock = threading.RLock()
        self._depth = 0
        self._init_db()

    def _init_db(self):
        with self._lock:
            # Enable WAL mode for safe concurrent reads during writes
            self.db.execute("PRAGMA journal_mode=WAL")
            self.db.execute("PRAGMA foreign_keys=ON")
            self.db.executescript(SCHEMA)

    def now(self) -> float:
        return self.clock()

    @contextmanager
    def transaction(self):
        """All-or-nothing unit of work. Nested calls join the outer transaction.

        Holds the connection lock for the whole unit, which serializes
        concurrent mutations of the same account or dispute.
        """
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self.db.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if outermost:
                    self.db.execute("ROLLBACK")
                    log.debug("db.rollback")
                raise
            else:
                self._depth -= 1
                if outermost:
                    self.db.execute("COMMIT")

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def execute(self, sql: str, params=()) -> sqlite3.Cursor:
        with self._lock:
            return self.db.execute(sql, params)

    def fetchone(self, sql: str, params=()) -> sqlite3.Row | None:
        with self._lock:
            return self.db.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params=()) -> list[sqlite3.Row]:
        with self._lock:
            return self.db.execute(sql, params).fetchall()

    def close(self):
        with self._lock:
            self.db.close()
