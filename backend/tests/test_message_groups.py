# tests/test_message_groups.py — Message list reconciler
from datetime import datetime, timedelta, timezone

from message_groups import group_messages, pinned_messages, reaction_summary

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def msg(mid, user, seconds, type_="text", **extra):
    m = {
        "id": mid,
        "user_id": user,
        "display_name": user.title() if user else "System",
        "type": type_,
        "content": f"message {mid}",
        "created_at": T0 + timedelta(seconds=seconds) if seconds is not None else None,
    }
    m.update(extra)
    return m


def test_empty_list():
    assert group_messages([]) == []


def test_same_author_within_window_groups():
    groups = group_messages([msg("1", "ana", 0), msg("2", "ana", 60), msg("3", "ana", 299 + 60)])
    assert len(groups) == 1
    assert [m["id"] for m in groups[0].messages] == ["1", "2", "3"]
    assert groups[0].user_id == "ana"
    assert groups[0].started_at == T0


def test_gap_of_window_or_more_splits():
    groups = group_messages([msg("1", "ana", 0), msg("2", "ana", 300)])
    assert [len(g.messages) for g in groups] == [1, 1]


def test_gap_measured_from_previous_message():
    # each step is under five minutes even though the group spans longer
    groups = group_messages([msg(str(i), "ana", i * 240) for i in range(4)])
    assert len(groups) == 1


def test_author_change_splits():
    groups = group_messages([msg("1", "ana", 0), msg("2", "ben", 10), msg("3", "ana", 20)])
    assert [g.user_id for g in groups] == ["ana", "ben", "ana"]


def test_system_messages_stand_alone():
    groups = group_messages([
        msg("1", "ana", 0),
        msg("2", None, 5, type_="system"),
        msg("3", None, 6, type_="system"),
        msg("4", "ana", 10),
    ])
    assert [len(g.messages) for g in groups] == [1, 1, 1, 1]
    assert [g.is_system for g in groups] == [False, True, True, False]


def test_missing_timestamp_starts_new_group():
    groups = group_messages([msg("1", "ana", 0), msg("2", "ana", None)])
    assert len(groups) == 2


def test_iso_string_timestamps_are_understood():
    groups = group_messages([
        msg("1", "ana", None, created_at=T0.isoformat()),
        msg("2", "ana", None, created_at=(T0 + timedelta(seconds=30)).isoformat()),
    ])
    assert len(groups) == 1


def test_every_message_appears_once_in_order():
    messages = [msg(str(i), "ana" if i % 3 else "ben", i * 100) for i in range(12)]
    groups = group_messages(messages)
    flattened = [m["id"] for g in groups for m in g.messages]
    assert flattened == [m["id"] for m in messages]


def test_custom_window():
    groups = group_messages([msg("1", "ana", 0), msg("2", "ana", 30)], window_seconds=10)
    assert len(groups) == 2


def test_group_to_dict():
    group = group_messages([msg("1", "ana", 0)])[0].to_dict()
    assert group["id"] == "1"
    assert group["display_name"] == "Ana"
    assert group["started_at"] == T0.isoformat()
    assert len(group["messages"]) == 1


def test_pinned_messages_filter():
    messages = [msg("1", "ana", 0, pinned=True), msg("2", "ana", 1), msg("3", "ben", 2, pinned=True)]
    assert [m["id"] for m in pinned_messages(messages)] == ["1", "3"]


def test_reaction_summary():
    message = msg("1", "ana", 0, reactions={"👍": ["ana", "ben"], "🎉": ["ben"], "👀": []})
    summary = reaction_summary(message, viewer_id="ana")
    assert {"emoji": "👍", "count": 2, "reacted": True} in summary
    assert {"emoji": "🎉", "count": 1, "reacted": False} in summary
    assert all(r["emoji"] != "👀" for r in summary)
