from datetime import datetime, timedelta, timezone
from uuid import uuid4

from app.schemas.messaging_schemas import AttachmentIn, GroupView, MessageRead
from app.services.chat.conversation_index import (
    MessageLog, conversation_key_for, derive_conversations, preview_for
)
from app.services.chat.participants import ParticipantProfile, Role

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
TENANT = uuid4()


def message(sender, receiver=None, minutes=0, text="hi", read_at=None, conversation_id=None, **kwargs):
    return MessageRead(
        message_id=kwargs.pop("message_id", uuid4()),
        tenant_id=TENANT,
        sender_id=sender,
        receiver_id=receiver,
        conversation_id=conversation_id,
        text=text,
        is_group=conversation_id is not None,
        sent_at=T0 + timedelta(minutes=minutes),
        read_at=read_at,
        **kwargs,
    )


def profile(participant_id, name, role=Role.STUDENT):
    return ParticipantProfile(participant_id=participant_id, role=role, display_name=name)


def test_conversation_key_is_the_counterpart_or_the_group():
    me, other, group = uuid4(), uuid4(), uuid4()

    assert conversation_key_for(message(me, other), me) == other
    assert conversation_key_for(message(other, me), me) == other
    assert conversation_key_for(message(other, None, conversation_id=group), me) == group


def test_teacher_to_student_unread_then_read():
    teacher, student = uuid4(), uuid4()
    first = message(teacher, student, text="Hello Asha")
    profiles = {teacher: profile(teacher, "Ms. Rao", Role.TEACHER), student: profile(student, "Asha")}

    [summary] = derive_conversations(student, [first], {teacher: {"is_online": True}}, set(), profiles, {})
    assert summary.key == teacher
    assert summary.display_name == "Ms. Rao"
    assert summary.unread_count == 1
    assert summary.is_online is True
    assert summary.last_message_preview == "Hello Asha"

    read = first.model_copy(update={"read_at": T0 + timedelta(minutes=1)})
    [summary] = derive_conversations(student, [read], {}, set(), profiles, {})
    assert summary.unread_count == 0
    assert summary.is_online is False

    # The sender never counts their own messages as unread
    [summary] = derive_conversations(teacher, [first], {}, set(), profiles, {})
    assert summary.key == student
    assert summary.unread_count == 0


def test_ordering_is_most_recent_first_and_deterministic():
    me, a, b, c = uuid4(), uuid4(), uuid4(), uuid4()
    messages = [
        message(a, me, minutes=1),
        message(me, b, minutes=5),
        message(c, me, minutes=3),
        message(a, me, minutes=2),
    ]

    keys = [s.key for s in derive_conversations(me, messages, {}, set(), {}, {})]
    assert keys == [b, c, a]
    assert keys == [s.key for s in derive_conversations(me, list(reversed(messages)), {}, set(), {}, {})]


def test_ties_break_on_key():
    me, a, b = uuid4(), uuid4(), uuid4()
    messages = [message(a, me), message(b, me)]

    keys = [s.key for s in derive_conversations(me, messages, {}, set(), {}, {})]
    assert keys == sorted([a, b], key=str, reverse=True)


def test_duplicate_deliveries_count_once():
    me, other = uuid4(), uuid4()
    first = message(other, me)

    [summary] = derive_conversations(me, [first, first, first], {}, set(), {}, {})
    assert summary.unread_count == 1


def test_attachment_preview_and_fallback_name():
    me, other = uuid4(), uuid4()
    attachment = AttachmentIn(url="https://files.example/w.pdf", name="worksheet.pdf", mime_type="application/pdf")
    only_file = message(other, me, text=None, attachment=attachment, message_type="file")

    assert preview_for(only_file) == "Attachment: worksheet.pdf"
    [summary] = derive_conversations(me, [only_file], {}, set(), {}, {})
    assert summary.display_name == "Direct Message"
    assert summary.last_message_preview == "Attachment: worksheet.pdf"


def test_typing_overlay():
    me, a, b = uuid4(), uuid4(), uuid4()
    messages = [message(a, me), message(b, me, minutes=1)]

    summaries = derive_conversations(me, messages, {}, {a}, {}, {})
    assert {s.key: s.is_typing for s in summaries} == {a: True, b: False}


def test_group_unread_uses_read_marker():
    me, a, b, group_id = uuid4(), uuid4(), uuid4(), uuid4()
    messages = [
        message(a, conversation_id=group_id, minutes=0, group_name="Class 7B"),
        message(me, conversation_id=group_id, minutes=1, group_name="Class 7B"),
        message(b, conversation_id=group_id, minutes=2, group_name="Class 7B"),
    ]
    groups = {group_id: GroupView(conversation_id=group_id, name="Class 7B", last_read_at=T0)}

    [summary] = derive_conversations(me, messages, {}, set(), {}, groups)
    assert summary.is_group is True
    assert summary.display_name == "Class 7B"
    assert summary.unread_count == 1
    assert summary.is_online is False

    never_read = {group_id: GroupView(conversation_id=group_id, name="Class 7B")}
    [summary] = derive_conversations(me, messages, {}, set(), {}, never_read)
    assert summary.unread_count == 2


def test_message_log_keeps_read_receipt_over_late_insert_echo():
    me, other = uuid4(), uuid4()
    log = MessageLog()
    original = message(other, me)
    read = original.model_copy(update={"read_at": T0 + timedelta(minutes=1)})

    assert log.apply(original) is True
    assert log.apply(read) is True
    assert log.apply(original) is False
    assert log.get(original.message_id).read_at == read.read_at
    assert len(log) == 1
    assert original.message_id in log


def test_message_log_for_conversation():
    me, a, b = uuid4(), uuid4(), uuid4()
    log = MessageLog()
    log.load([message(a, me, minutes=2), message(me, a, minutes=1), message(b, me)])

    assert [m.sent_at for m in log.for_conversation(me, a)] == [T0 + timedelta(minutes=1), T0 + timedelta(minutes=2)]
