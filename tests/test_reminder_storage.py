"""Tests for the SQLite reminder store."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

import storage.reminder as reminder_storage
from datamodel import ReminderRecord, ReminderValidationError
from events import E, bus

from tests.conftest import NOW


async def _insert(title: str = "Drink water", **kwargs) -> ReminderRecord:
    kwargs.setdefault("trigger_at", NOW - timedelta(minutes=1))
    return await reminder_storage.insert_reminder(ReminderRecord(title=title, **kwargs), now=NOW)


@pytest.mark.asyncio
async def test_insert_assigns_id_and_defaults(db) -> None:
    reminder = await reminder_storage.insert_reminder(
        ReminderRecord(title="  Stretch  ", body="Stand up", sent=True),
        now=NOW,
    )

    assert reminder.reminder_id
    assert reminder.title == "Stretch"
    assert reminder.sent is False
    assert reminder.trigger_at == NOW
    assert reminder.created_at == NOW

    stored = await reminder_storage.get_reminder(reminder.reminder_id)
    assert stored == reminder


@pytest.mark.asyncio
async def test_insert_generates_unique_ids(db) -> None:
    first = await _insert("one")
    second = await _insert("two")
    assert first.reminder_id != second.reminder_id


@pytest.mark.parametrize("title", [None, "", "   "])
@pytest.mark.asyncio
async def test_insert_rejects_missing_title(db, title) -> None:
    with pytest.raises(ReminderValidationError):
        await reminder_storage.insert_reminder(ReminderRecord(title=title), now=NOW)

    assert await reminder_storage.count_reminders() == 0


@pytest.mark.asyncio
async def test_insert_clears_recurrence_type_for_one_shot(db) -> None:
    reminder = await _insert(recurring=False, recurrence_type="weekly")
    assert reminder.recurrence_type is None


@pytest.mark.asyncio
async def test_insert_keeps_unknown_recurrence_type(db) -> None:
    reminder = await _insert(recurring=True, recurrence_type="Fortnightly")
    stored = await reminder_storage.get_reminder(reminder.reminder_id)
    assert stored.recurrence_type == "fortnightly"


@pytest.mark.asyncio
async def test_insert_round_trips_data_and_destination(db) -> None:
    reminder = await _insert(destination="chat-42", data={"task_id": "t-1", "sound": "urgent"})
    stored = await reminder_storage.get_reminder(reminder.reminder_id)
    assert stored.destination == "chat-42"
    assert stored.data == {"task_id": "t-1", "sound": "urgent"}


@pytest.mark.asyncio
async def test_insert_emits_created_event(db) -> None:
    seen: list[ReminderRecord] = []

    @bus.on(E.REMINDER_CREATED)
    def capture(reminder: ReminderRecord) -> None:
        seen.append(reminder)

    try:
        reminder = await _insert()
    finally:
        bus.remove_listener(E.REMINDER_CREATED, capture)

    assert [r.reminder_id for r in seen] == [reminder.reminder_id]


@pytest.mark.asyncio
async def test_find_due_selects_only_elapsed_unsent(db) -> None:
    past = await _insert("past", trigger_at=NOW - timedelta(hours=1))
    exact = await _insert("exact", trigger_at=NOW)
    await _insert("future", trigger_at=NOW + timedelta(microseconds=1))
    sent = await _insert("sent", trigger_at=NOW - timedelta(days=2))
    await reminder_storage.mark_sent(sent.reminder_id, NOW - timedelta(days=1))

    due = await reminder_storage.find_due(NOW)

    assert {r.reminder_id for r in due} == {past.reminder_id, exact.reminder_id}


@pytest.mark.asyncio
async def test_mark_sent_is_idempotent(db) -> None:
    reminder = await _insert()

    assert await reminder_storage.mark_sent(reminder.reminder_id, NOW) is True
    once = await reminder_storage.get_reminder(reminder.reminder_id)

    assert await reminder_storage.mark_sent(reminder.reminder_id, NOW + timedelta(minutes=5)) is False
    twice = await reminder_storage.get_reminder(reminder.reminder_id)

    assert once.sent is True
    assert once.sent_at == NOW
    assert twice == once


@pytest.mark.asyncio
async def test_mark_sent_unknown_id_is_not_an_error(db) -> None:
    assert await reminder_storage.mark_sent("missing", NOW) is False


@pytest.mark.asyncio
async def test_reschedule_updates_trigger_and_last_sent(db) -> None:
    reminder = await _insert(recurring=True, recurrence_type="daily")
    next_at = reminder.trigger_at + timedelta(days=1)

    assert await reminder_storage.reschedule(reminder.reminder_id, next_at, NOW) is True

    stored = await reminder_storage.get_reminder(reminder.reminder_id)
    assert stored.trigger_at == next_at
    assert stored.last_sent_at == NOW
    assert stored.sent is False


@pytest.mark.asyncio
async def test_reschedule_missing_id_does_not_raise(db) -> None:
    assert await reminder_storage.reschedule("missing", NOW + timedelta(days=1), NOW) is False


@pytest.mark.asyncio
async def test_mark_invalid_token_keeps_record(db) -> None:
    reminder = await _insert()

    assert await reminder_storage.mark_invalid_token(reminder.reminder_id) is True

    stored = await reminder_storage.get_reminder(reminder.reminder_id)
    assert stored.invalid_token is True
    assert stored.trigger_at == reminder.trigger_at
    assert stored.sent is False
    assert await reminder_storage.mark_invalid_token("missing") is False


@pytest.mark.asyncio
async def test_delete_older_than_uses_strict_cutoff(db) -> None:
    cutoff = NOW - timedelta(days=30)
    at_cutoff = await _insert("at cutoff")
    just_older = await _insert("just older")
    unsent = await _insert("unsent", trigger_at=NOW - timedelta(days=60))
    recurring = await _insert("recurring", recurring=True, recurrence_type="daily")
    await reminder_storage.mark_sent(at_cutoff.reminder_id, cutoff)
    await reminder_storage.mark_sent(just_older.reminder_id, cutoff - timedelta(microseconds=1))
    await reminder_storage.reschedule(recurring.reminder_id, NOW, cutoff - timedelta(days=1))

    deleted = await reminder_storage.delete_older_than(cutoff)

    assert deleted == 1
    assert await reminder_storage.get_reminder(just_older.reminder_id) is None
    assert await reminder_storage.get_reminder(at_cutoff.reminder_id) is not None
    assert await reminder_storage.get_reminder(unsent.reminder_id) is not None
    assert await reminder_storage.get_reminder(recurring.reminder_id) is not None


@pytest.mark.asyncio
async def test_concurrent_updates_on_different_records(db) -> None:
    one_shot = await _insert("one-shot")
    recurring = await _insert("recurring", recurring=True, recurrence_type="hourly")
    next_at = recurring.trigger_at + timedelta(hours=1)

    results = await asyncio.gather(
        reminder_storage.mark_sent(one_shot.reminder_id, NOW),
        reminder_storage.reschedule(recurring.reminder_id, next_at, NOW),
        reminder_storage.reschedule("deleted-meanwhile", next_at, NOW),
    )

    assert results == [True, True, False]
    assert (await reminder_storage.get_reminder(one_shot.reminder_id)).sent is True
    assert (await reminder_storage.get_reminder(recurring.reminder_id)).trigger_at == next_at


@pytest.mark.asyncio
async def test_update_reminder_applies_user_edit(db) -> None:
    reminder = await _insert(destination="old-chat")
    await reminder_storage.mark_invalid_token(reminder.reminder_id)

    updated = await reminder_storage.update_reminder(
        reminder.reminder_id,
        {"title": "Call mom", "destination": "new-chat", "recurring": True, "recurrence_type": "weekly"},
        now=NOW,
    )

    assert updated.title == "Call mom"
    assert updated.destination == "new-chat"
    assert updated.invalid_token is False
    assert updated.recurrence_type == "weekly"
    assert await reminder_storage.get_reminder(reminder.reminder_id) == updated


@pytest.mark.asyncio
async def test_update_reminder_rejects_scheduler_fields(db) -> None:
    reminder = await _insert()
    with pytest.raises(ReminderValidationError):
        await reminder_storage.update_reminder(reminder.reminder_id, {"sent": True})


@pytest.mark.asyncio
async def test_update_reminder_rejects_blank_title(db) -> None:
    reminder = await _insert()
    with pytest.raises(ReminderValidationError):
        await reminder_storage.update_reminder(reminder.reminder_id, {"title": " "})
    assert (await reminder_storage.get_reminder(reminder.reminder_id)).title == "Drink water"


@pytest.mark.asyncio
async def test_update_and_delete_missing_reminder(db) -> None:
    assert await reminder_storage.update_reminder("missing", {"title": "x"}) is None
    assert await reminder_storage.delete_reminder("missing") is False


@pytest.mark.asyncio
async def test_delete_reminder(db) -> None:
    reminder = await _insert()
    assert await reminder_storage.delete_reminder(reminder.reminder_id) is True
    assert await reminder_storage.get_reminder(reminder.reminder_id) is None


@pytest.mark.asyncio
async def test_list_and_count_filters(db) -> None:
    pending = await _insert("Pay rent")
    sent = await _insert("Book dentist")
    await _insert("Morning pages", recurring=True, recurrence_type="daily")
    await reminder_storage.mark_sent(sent.reminder_id, NOW)
    await reminder_storage.mark_invalid_token(pending.reminder_id)

    assert await reminder_storage.count_reminders() == 3
    assert [r.title for r in await reminder_storage.list_reminders(status="pending")] == ["Pay rent"]
    assert [r.title for r in await reminder_storage.list_reminders(status="sent")] == ["Book dentist"]
    assert [r.title for r in await reminder_storage.list_reminders(status="recurring")] == ["Morning pages"]
    assert [r.title for r in await reminder_storage.list_reminders(invalid_token=True)] == ["Pay rent"]
    assert await reminder_storage.count_reminders(q="dentist") == 1
    assert len(await reminder_storage.list_reminders(limit=2)) == 2

    with pytest.raises(ReminderValidationError):
        await reminder_storage.list_reminders(status="archived")


@pytest.mark.asyncio
async def test_store_requires_initialised_database() -> None:
    with pytest.raises(RuntimeError):
        await reminder_storage.find_due(NOW)


@pytest.mark.asyncio
async def test_sent_one_shot_made_recurring_is_scheduled_again(db) -> None:
    reminder = await _insert("Review goals")
    await reminder_storage.mark_sent(reminder.reminder_id, NOW)

    updated = await reminder_storage.update_reminder(
        reminder.reminder_id,
        {"recurring": True, "recurrence_type": "daily", "trigger_at": NOW - timedelta(minutes=1)},
        now=NOW,
    )

    assert updated.sent is False
    assert updated.sent_at is None
    assert await reminder_storage.get_reminder(reminder.reminder_id) == updated
    assert [r.reminder_id for r in await reminder_storage.find_due(NOW)] == [reminder.reminder_id]


@pytest.mark.asyncio
async def test_editing_sent_one_shot_keeps_it_sent(db) -> None:
    reminder = await _insert("Renew passport")
    await reminder_storage.mark_sent(reminder.reminder_id, NOW)

    updated = await reminder_storage.update_reminder(reminder.reminder_id, {"body": "Bring photos"}, now=NOW)

    assert updated.sent is True
    assert updated.sent_at == NOW
    assert await reminder_storage.find_due(NOW) == []


@pytest.mark.asyncio
async def test_mark_invalid_token_uses_given_time(db) -> None:
    reminder = await _insert()
    flagged_at = NOW + timedelta(minutes=3)

    await reminder_storage.mark_invalid_token(reminder.reminder_id, flagged_at)

    assert (await reminder_storage.get_reminder(reminder.reminder_id)).updated_at == flagged_at


@pytest.mark.asyncio
async def test_purge_invalid_removes_flagged_records(db) -> None:
    stale = await _insert("stale", destination="chat-1")
    other_stale = await _insert("other stale", destination="chat-2")
    healthy = await _insert("healthy", destination="chat-1")
    await reminder_storage.mark_invalid_token(stale.reminder_id)
    await reminder_storage.mark_invalid_token(other_stale.reminder_id)

    assert await reminder_storage.purge_invalid("chat-1") == 1
    assert await reminder_storage.get_reminder(stale.reminder_id) is None
    assert await reminder_storage.get_reminder(other_stale.reminder_id) is not None
    assert await reminder_storage.get_reminder(healthy.reminder_id) is not None

    assert await reminder_storage.purge_invalid() == 1
    assert await reminder_storage.count_reminders() == 1
