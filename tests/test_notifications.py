import sys, os; sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))
sys.path.insert(0, os.path.dirname(__file__))

import pytest

from protocol import NotificationType
from tribunal.db import Database
from tribunal.errors import NotFound
from tribunal.notifications import NotificationStore, TEMPLATES
from conftest import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return NotificationStore(Database(":memory:", clock=clock))


class TestTemplates:
    def test_every_type_has_template(self):
        assert set(TEMPLATES) == set(NotificationType)

    def test_rendered_message(self, store):
        n = store.send("usr_a", NotificationType.DISPUTE_RESOLVED,
                       {"bounty_title": "Logo", "ruling": "Split"})
        assert n.title == "Dispute Resolved"
        assert n.message == 'Dispute for "Logo" has been resolved: Split'

    def test_missing_fields_use_defaults(self, store):
        n = store.send("usr_a", NotificationType.BOUNTY_ACCEPTED)
        assert n.message == 'A guild has accepted your bounty "a bounty"'


class TestInbox:
    def test_newest_first(self, store, clock):
        store.send("usr_a", NotificationType.DISPUTE_RAISED, {"bounty_title": "one"})
        clock.advance(seconds=5)
        store.send("usr_a", NotificationType.DISPUTE_ESCALATED, {"bounty_title": "two"})
        items = store.list_for("usr_a")
        assert [n.type for n in items] == [NotificationType.DISPUTE_ESCALATED,
                                           NotificationType.DISPUTE_RAISED]

    def test_keyed_by_user(self, store):
        store.send("usr_a", NotificationType.DISPUTE_RAISED)
        assert store.list_for("usr_b") == []

    def test_mark_read(self, store):
        n = store.send("usr_a", NotificationType.DISPUTE_RAISED)
        assert store.unread_count("usr_a") == 1
        store.mark_read("usr_a", n.id)
        assert store.unread_count("usr_a") == 0
        assert store.list_for("usr_a", unread_only=True) == []
        assert store.list_for("usr_a")[0].read

    def test_cannot_mark_someone_elses(self, store):
        n = store.send("usr_a", NotificationType.DISPUTE_RAISED)
        with pytest.raises(NotFound):
            store.mark_read("usr_b", n.id)

    def test_mark_all_read(self, store):
        for _ in range(3):
            store.send("usr_a", NotificationType.TRIBUNAL_VOTE_NEEDED)
        assert store.mark_all_read("usr_a") == 3
        assert store.unread_count("usr_a") == 0

    def test_delete(self, store):
        n = store.send("usr_a", NotificationType.DISPUTE_RAISED)
        assert store.delete("usr_a", n.id)
        assert not store.delete("usr_a", n.id)

    def test_data_round_trips(self, store):
        store.send("usr_a", NotificationType.RANK_CHANGED,
                   {"account_id": "usr_a", "new_rank": "Elite", "increased": True})
        n = store.list_for("usr_a")[0]
        assert n.data == {"account_id": "usr_a", "new_rank": "Elite", "increased": True}
        assert n.message == "You've advanced to Elite rank"


class TestExpiry:
    def test_expires_after_ttl(self, store, clock):
        store.send("usr_a", NotificationType.DISPUTE_RAISED)
        clock.advance(days=6)
        assert len(store.list_for("usr_a")) == 1
        clock.advance(days=2)
        assert store.list_for("usr_a") == []
        assert store.unread_count("usr_a") == 0

    def test_custom_ttl(self, store, clock):
        store.send("usr_a", NotificationType.DISPUTE_RAISED, ttl=60)
        clock.advance(seconds=61)
        assert store.list_for("usr_a") == []

    def test_no_ttl_never_expires(self, store, clock):
        n = store.send("usr_a", NotificationType.DISPUTE_RAISED, ttl=None)
        assert n.expires_at is None
        clock.advance(days=400)
        assert len(store.list_for("usr_a")) == 1

    def test_purge(self, store, clock):
        store.send("usr_a", NotificationType.DISPUTE_RAISED)
        store.send("usr_a", NotificationType.DISPUTE_RAISED, ttl=None)
        clock.advance(days=8)
        assert store.purge_expired() == 1
        assert store.purge_expired() == 0

    def test_survives_reopen(self, tmp_path, clock):
        path = str(tmp_path / "notes.db")
        db = Database(path, clock=clock)
        NotificationStore(db).send("usr_a", NotificationType.DISPUTE_RAISED)
        db.close()
        reopened = NotificationStore(Database(path, clock=clock))
        assert len(reopened.list_for("usr_a")) == 1
