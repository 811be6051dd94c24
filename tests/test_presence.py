from datetime import datetime, timedelta

from chatcollab.core.security import Actor
from chatcollab.services.presence import ActivityKind, PresenceTracker

NOW = datetime(2024, 5, 1, 12, 0, 0)
BOB = Actor(id="user-bob", name="Bob", email="bob@example.com", avatar_url="https://img.example.com/bob.png")
ALICE = Actor(id="user-alice", name="Alice", email="alice@example.com")


def test_records_are_filtered_by_freshness(db):
    tracker = PresenceTracker(window_seconds=300)
    tracker.record_activity(db, "chat-1", BOB, ActivityKind.JOIN, now=NOW - timedelta(minutes=6))
    tracker.record_activity(db, "chat-1", ALICE, ActivityKind.JOIN, now=NOW - timedelta(minutes=1))

    active = tracker.list_active(db, "chat-1", now=NOW)

    assert [r.user_id for r in active] == [ALICE.id]


def test_upsert_keeps_one_record_per_user(db):
    tracker = PresenceTracker()
    tracker.record_activity(db, "chat-1", BOB, ActivityKind.JOIN, now=NOW - timedelta(minutes=2))
    tracker.record_activity(db, "chat-1", BOB, ActivityKind.TYPING, now=NOW)

    active = tracker.list_active(db, "chat-1", now=NOW)

    assert len(active) == 1
    assert active[0].is_typing
    assert active[0].last_seen == NOW
    assert active[0].avatar == BOB.avatar_url


def test_stop_typing_clears_flag(db):
    tracker = PresenceTracker()
    tracker.record_activity(db, "chat-1", BOB, ActivityKind.TYPING, now=NOW)
    tracker.record_activity(db, "chat-1", BOB, ActivityKind.STOP_TYPING, now=NOW)

    assert not tracker.list_active(db, "chat-1", now=NOW)[0].is_typing


def test_leave_removes_record(db):
    tracker = PresenceTracker()
    tracker.record_activity(db, "chat-1", BOB, ActivityKind.JOIN, now=NOW)
    tracker.record_activity(db, "chat-1", BOB, ActivityKind.LEAVE, now=NOW)

    assert tracker.list_active(db, "chat-1", now=NOW) == []


def test_exclude_user_and_chat_scoping(db):
    tracker = PresenceTracker()
    tracker.record_activity(db, "chat-1", BOB, ActivityKind.JOIN, now=NOW)
    tracker.record_activity(db, "chat-1", ALICE, ActivityKind.JOIN, now=NOW)
    tracker.record_activity(db, "chat-2", ALICE, ActivityKind.JOIN, now=NOW)

    assert [r.user_id for r in tracker.list_active(db, "chat-1", exclude_user_id=BOB.id, now=NOW)] == [ALICE.id]
    assert len(tracker.list_active(db, "chat-2", now=NOW)) == 1
