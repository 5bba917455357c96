# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""Inactivity decay for user trust scores.

Users idle longer than DECAY_GRACE_DAYS lose DECAY_POINTS_PER_DAY for each
extra idle day, at most DECAY_MAX_POINTS, never dropping below DECAY_FLOOR.
Scores at or below the floor are left alone. A decay that crosses a rank
boundary records RankDown and notifies the user, like any other rank change.

Each account is updated on its own with a guarded UPDATE (WHERE trust_score
equals what we read), so a recompute that lands mid-sweep wins and that
account is simply skipped until the next run.

The background tick also purges expired notifications.
"""

import threading
from dataclasses import dataclass

from protocol import (
    DECAY_FLOOR, DECAY_GRACE_DAYS, DECAY_INTERVAL_SECONDS, DECAY_MAX_POINTS,
    DECAY_POINTS_PER_DAY, RANK_CHANGE_TRUST_IMPACT, AccountKind, ActivityType,
    NotificationType, RankTransition, UserRank,
)
from tribunal.accounts import AccountStore
from tribunal.db import Database
from tribunal.log import get_logger
from tribunal.notifications import NotificationStore
from tribunal.ranking import classify, detect_transition, thresholds_for

log = get_logger(__name__)

DAY = 86400


@dataclass(frozen=True)
class DecayReport:
    processed: int
    decayed: int
    demoted: int = 0


def decay_points(idle_days: int) -> int:
    """Points lost for a given number of whole idle days."""
    if idle_days <= DECAY_GRACE_DAYS:
        return 0
    return min((idle_days - DECAY_GRACE_DAYS) * DECAY_POINTS_PER_DAY, DECAY_MAX_POINTS)


class TrustDecayScheduler:
    """Periodic inactivity sweep, runnable on demand or from a daemon thread."""

    def __init__(self, db: Database, accounts: AccountStore,
                 notifications: NotificationStore | None = None,
                 interval: float = DECAY_INTERVAL_SECONDS):
        self.db = db
        self.accounts = accounts
        self.notifications = notifications
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def sweep(self, now: float | None = None) -> DecayReport:
        now = self.db.now() if now is None else now
        cutoff = now - DECAY_GRACE_DAYS * DAY
        rows = self.db.fetchall(
            "SELECT id, trust_score, rank, last_active FROM accounts "
            "WHERE kind = ? AND last_active < ? AND trust_score > ?",
            (AccountKind.USER.value, cutoff, DECAY_FLOOR),
        )
        decayed = demoted = 0
        for row in rows:
            idle_days = int((now - row["last_active"]) // DAY)
            old = row["trust_score"]
            new = max(DECAY_FLOOR, old - decay_points(idle_days))
            if new == old:
                continue
            old_rank = UserRank(row["rank"])
            rank = classify(new, thresholds_for(AccountKind.USER))
            transition = detect_transition(old_rank, rank)
            with self.db.transaction():
                if not self.accounts.set_trust(row["id"], new, rank, expected=old):
                    log.debug("decay.skipped_concurrent", account_id=row["id"])
                    continue
                self.accounts.record_activity(
                    row["id"], ActivityType.TRUST_DECAY,
                    f"Trust decayed after {idle_days} idle days",
                    impact_on_trust=new - old, touch=False,
                )
                if transition is RankTransition.DEMOTED:
                    self.accounts.record_activity(
                        row["id"], ActivityType.RANK_DOWN,
                        f"Rank demoted to {rank.value}",
                        impact_on_trust=-RANK_CHANGE_TRUST_IMPACT, touch=False,
                    )
                    if self.notifications is not None:
                        self.notifications.send(row["id"], NotificationType.RANK_CHANGED,
                                                {"account_id": row["id"], "new_rank": rank.value,
                                                 "increased": False})
            decayed += 1
            if transition is RankTransition.DEMOTED:
                demoted += 1
                log.info("trust.rank_changed", account_id=row["id"],
                         old_rank=old_rank.value, rank=rank.value, cause="decay")
        report = DecayReport(processed=len(rows), decayed=decayed, demoted=demoted)
        log.info("decay.sweep", processed=report.processed, decayed=report.decayed,
                 demoted=report.demoted)
        return report

    def tick(self) -> DecayReport:
        """One scheduler run: decay idle users, then drop expired notifications."""
        report = self.sweep()
        if self.notifications is not None:
            self.notifications.purge_expired()
        return report

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.tick()
            except Exception:
                # Keep the scheduler alive; the next tick retries
                log.exception("decay.sweep_failed")

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="trust-decay", daemon=True)
        self._thread.start()
        log.info("decay.started", interval=self.interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
        log.info("decay.stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
