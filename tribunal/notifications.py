# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""Durable per-user notifications with expiry.

Rows live in the shared SQLite store so they survive restarts and are visible
to every worker. Delivery (push, websockets) is somebody else's job; this only
records what a user should see.
"""

import json
import uuid
from dataclasses import dataclass

from protocol import NOTIFICATION_TTL_SECONDS, NotificationType
from tribunal.db import Database
from tribunal.errors import NotFound
from tribunal.log import get_logger

log = get_logger(__name__)


def _title(d: dict) -> str:
    return d.get("bounty_title", "a bounty")


TEMPLATES = {
    NotificationType.BOUNTY_ACCEPTED: lambda d: (
        "Bounty Accepted", f'{d.get("guild_name", "A guild")} has accepted your bounty "{_title(d)}"'),
    NotificationType.BOUNTY_SUBMITTED: lambda d: (
        "Bounty Submitted", f'{d.get("guild_name", "A guild")} has submitted work for "{_title(d)}"'),
    NotificationType.BOUNTY_COMPLETED: lambda d: (
        "Bounty Completed!", f'"{_title(d)}" has been completed. {d.get("reward", 0)} credits earned!'),
    NotificationType.DISPUTE_RAISED: lambda d: (
        "Dispute Raised", f'A dispute has been raised for "{_title(d)}"'),
    NotificationType.DISPUTE_ESCALATED: lambda d: (
        "Dispute Escalated", f'Dispute for "{_title(d)}" escalated to {d.get("tier", "Tribunal")}'),
    NotificationType.DISPUTE_RESOLVED: lambda d: (
        "Dispute Resolved", f'Dispute for "{_title(d)}" has been resolved: {d.get("ruling", "")}'),
    NotificationType.TRIBUNAL_VOTE_NEEDED: lambda d: (
        "Your Vote Needed", f'Cast your tribunal vote for "{_title(d)}"'),
    NotificationType.RANK_CHANGED: lambda d: (
        "Rank Updated!",
        f'You\'ve {"advanced to" if d.get("increased") else "changed to"} {d.get("new_rank")} rank'),
}


@dataclass
class Notification:
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    data: dict
    read: bool
    created_at: float
    expires_at: float | None

    @classmethod
    def from_row(cls, row) -> "Notification":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            type=NotificationType(row["type"]),
            title=row["title"],
            message=row["message"],
            data=json.loads(row["data"]),
            read=bool(row["read"]),
            created_at=row["created_at"],
            expires_at=row["expires_at"],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "data": self.data,
            "read": self.read,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }


class NotificationStore:
    """SQLite-backed notification inbox keyed by user id."""

    def __init__(self, db: Database):
        self.db = db

    def send(self, user_id: str, ntype: NotificationType, data: dict | None = None,
             ttl: float | None = NOTIFICATION_TTL_SECONDS) -> Notification:
        """Store a notification rendered from its type's template. ttl=None never expires."""
        data = dict(data or {})
        title, message = TEMPLATES[ntype](data)
        now = self.db.now()
        notification = Notification(
            id=uuid.uuid4().hex,
            user_id=user_id,
            type=ntype,
            title=title,
            message=message,
            data=data,
            read=False,
            created_at=now,
            expires_at=None if ttl is None else now + ttl,
        )
        self.db.execute(
            """INSERT INTO notifications (id, user_id, type, title, message, data, read,
               created_at, expires_at) VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)""",
            (notification.id, user_id, ntype.value, title, message,
             json.dumps(data, default=str), now, notification.expires_at),
        )
        log.debug("notification.sent", user_id=user_id, type=ntype.value)
        return notification

    def list_for(self, user_id: str, now: float | None = None,
                 unread_only: bool = False) -> list[Notification]:
        """Live notifications for a user, newest first."""
        now = self.db.now() if now is None else now
        sql = ("SELECT * FROM notifications WHERE user_id = ? "
               "AND (expires_at IS NULL OR expires_at > ?)")
        if unread_only:
            sql += " AND read = 0"
        rows = self.db.fetchall(sql + " ORDER BY created_at DESC, rowid DESC", (user_id, now))
        return [Notification.from_row(r) for r in rows]

    def mark_read(self, user_id: str, notification_id: str) -> None:
        cursor = self.db.execute(
            "UPDATE notifications SET read = 1 WHERE id = ? AND user_id = ?",
            (notification_id, user_id),
        )
        if cursor.rowcount == 0:
            raise NotFound(f"Notification {notification_id} not found")

    def mark_all_read(self, user_id: str) -> int:
        cursor = self.db.execute(
            "UPDATE notifications SET read = 1 WHERE user_id = ? AND read = 0", (user_id,),
        )
        return cursor.rowcount

    def unread_count(self, user_id: str, now: float | None = None) -> int:
        now = self.db.now() if now is None else now
        row = self.db.fetchone(
            "SELECT COUNT(*) AS n FROM notifications WHERE user_id = ? AND read = 0 "
            "AND (expires_at IS NULL OR expires_at > ?)",
            (user_id, now),
        )
        return row["n"]

    def delete(self, user_id: str, notification_id: str) -> bool:
        cursor = self.db.execute(
            "DELETE FROM notifications WHERE id = ? AND user_id = ?", (notification_id, user_id),
        )
        return cursor.rowcount > 0

    def purge_expired(self, now: float | None = None) -> int:
        now = self.db.now() if now is None else now
        cursor = self.db.execute(
            "DELETE FROM notifications WHERE expires_at IS NOT NULL AND expires_at <= ?", (now,),
        )
        if cursor.rowcount:
            log.info("notification.purged", count=cursor.rowcount)
        return cursor.rowcount
