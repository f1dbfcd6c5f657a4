import asyncio
from datetime import datetime, timedelta
from uuid import UUID, uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.change_feed import MESSAGES, MEMBERSHIPS, ChangeType
from app.core.exceptions import PermissionDeniedError, ValidationError
from app.models import Base
from app.models.chat import Message
from app.schemas.messaging_schemas import AttachmentIn, MessageContent, MessageSearchFilters
from app.services.chat.group_service import GroupService
from app.services.chat.message_service import MessageService
from app.utils.time import as_utc, utcnow


def text(body):
    return MessageContent(text=body)


async def count_messages(db):
    result = await db.execute(select(func.count()).select_from(Message))
    return result.scalar()


@pytest.fixture
def events(feed, tenant_id):
    received = []

    async def collect(event):
        received.append(event)

    feed.subscribe(MESSAGES, tenant_id, collect)
    feed.subscribe(MEMBERSHIPS, tenant_id, collect)
    return received


async def test_send_direct_message_publishes_insert(db, feed, events, teacher, student):
    message = await MessageService(db, feed).send(teacher, student.participant_id, text("Homework is due Friday"))

    assert message.receiver_id == student.participant_id
    assert message.conversation_id is None
    assert message.message_type == "text"
    assert message.read_at is None
    assert [(e.type, e.table) for e in events] == [(ChangeType.INSERT, MESSAGES)]
    assert events[0].row["message_id"] == str(message.id)


async def test_empty_message_is_rejected_before_insert(db, teacher, student):
    service = MessageService(db)

    with pytest.raises(ValidationError):
        await service.send(teacher, student.participant_id, MessageContent(text="   "))
    with pytest.raises(ValidationError):
        await service.send(teacher, student.participant_id, MessageContent())

    assert await count_messages(db) == 0


async def test_cannot_message_yourself(db, teacher):
    with pytest.raises(ValidationError):
        await MessageService(db).send(teacher, teacher.participant_id, text("note to self"))


async def test_direct_message_needs_a_receiver(db, teacher):
    with pytest.raises(ValidationError):
        await MessageService(db).send(teacher, None, text("hello?"))


async def test_unknown_conversation_id_is_rejected(db, teacher, student):
    with pytest.raises(ValidationError):
        await MessageService(db).send(teacher, student.participant_id, text("hi"), conversation_id=uuid4())
    assert await count_messages(db) == 0


async def test_attachment_sets_message_type(db, teacher, student):
    service = MessageService(db)
    image = await service.send(teacher, student.participant_id, MessageContent(
        attachment=AttachmentIn(url="https://files.example/a.png", name="a.png", mime_type="image/png")
    ))
    document = await service.send(teacher, student.participant_id, MessageContent(
        text="See attached",
        attachment=AttachmentIn(url="https://files.example/b.pdf", name="b.pdf", mime_type="application/pdf"),
    ))

    assert image.message_type == "image"
    assert image.text is None
    assert document.message_type == "file"
    assert document.attachment_name == "b.pdf"


async def test_conversation_history_is_oldest_first_for_both_sides(db, teacher, student, other_student):
    service = MessageService(db)
    first = await service.send(teacher, student.participant_id, text("one"))
    second = await service.send(student, teacher.participant_id, text("two"))
    third = await service.send(teacher, student.participant_id, text("three"))
    await service.send(teacher, other_student.participant_id, text("unrelated"))

    from_teacher = await service.list_for_conversation(teacher, student.participant_id)
    from_student = await service.list_for_conversation(student, teacher.participant_id)

    assert [m.id for m in from_teacher] == [first.id, second.id, third.id]
    assert [m.id for m in from_student] == [first.id, second.id, third.id]

    latest = await service.list_for_conversation(teacher, student.participant_id, limit=2)
    assert [m.id for m in latest] == [second.id, third.id]


async def test_mark_read_is_idempotent(db, feed, events, teacher, student):
    service = MessageService(db, feed)
    await service.send(teacher, student.participant_id, text("one"))
    await service.send(teacher, student.participant_id, text("two"))
    own = await service.send(student, teacher.participant_id, text("reply"))
    events.clear()

    assert await service.mark_read(student, teacher.participant_id) == 2
    assert [e.type for e in events] == [ChangeType.UPDATE, ChangeType.UPDATE]

    events.clear()
    assert await service.mark_read(student, teacher.participant_id) == 0
    assert events == []

    await db.refresh(own)
    assert own.read_at is None


async def test_mark_read_only_covers_messages_sent_up_to_the_marker(db, teacher, student):
    service = MessageService(db)
    first = await service.send(teacher, student.participant_id, text("one"))
    later = await service.send(teacher, student.participant_id, text("two"))

    assert await service.mark_read(student, teacher.participant_id, up_to=first.sent_at) == 1

    await db.refresh(later)
    assert later.read_at is None
    assert await service.mark_read(student, teacher.participant_id) == 1


async def test_list_for_participant_includes_groups(db, directory, teacher, student, other_student, third_student):
    group = await GroupService(db).create_group(
        teacher, "Science club", [student.participant_id, other_student.participant_id], directory
    )
    service = MessageService(db)
    await service.send(student, teacher.participant_id, text("direct"))
    await service.send(other_student, None, text("group hello"), conversation_id=group.id)
    await service.send(other_student, third_student.participant_id, text("not for student"))

    texts = [m.text for m in await service.list_for_participant(student)]
    assert texts == ['Group "Science club" created', "direct", "group hello"]


async def test_group_create_validation(db, directory, teacher, student, other_student):
    service = GroupService(db)

    with pytest.raises(ValidationError):
        await service.create_group(teacher, "  ", [student.participant_id, other_student.participant_id], directory)
    with pytest.raises(ValidationError):
        await service.create_group(teacher, "Pair", [student.participant_id, teacher.participant_id], directory)
    with pytest.raises(ValidationError):
        await service.create_group(teacher, "Ghosts", [student.participant_id, uuid4()], directory)

    assert await count_messages(db) == 0


async def test_group_messages_and_read_marker(db, feed, events, directory, teacher, student, other_student, third_student):
    group = await GroupService(db, feed).create_group(
        teacher, "Class 7B", [student.participant_id, other_student.participant_id], directory
    )
    assert [e.table for e in events] == [MEMBERSHIPS, MEMBERSHIPS, MEMBERSHIPS, MESSAGES]
    assert events[-1].row["group_name"] == "Class 7B"

    service = MessageService(db, feed)
    message = await service.send(other_student, None, text("Who has the notes?"), conversation_id=group.id)
    assert message.is_group is True
    assert message.receiver_id is None
    assert message.group_name == "Class 7B"

    with pytest.raises(PermissionDeniedError):
        await service.send(third_student, None, text("let me in"), conversation_id=group.id)

    # Seed message plus the question
    assert await service.mark_read(student, group.id) == 2
    assert await service.mark_read(student, group.id) == 0

    members = await GroupService(db).list_members(teacher, group.id)
    assert {m.participant_id for m in members} == {
        teacher.participant_id, student.participant_id, other_student.participant_id
    }


async def test_search_filters(db, teacher, student):
    service = MessageService(db)
    await service.send(teacher, student.participant_id, text("Maths test on Monday"))
    await service.send(student, teacher.participant_id, text("Is the test open book?"))
    await service.send(teacher, student.participant_id, MessageContent(
        attachment=AttachmentIn(url="https://files.example/s.pdf", name="syllabus.pdf", mime_type="application/pdf")
    ))

    found = await service.search(student, teacher.participant_id, MessageSearchFilters(query="TEST"))
    assert [m.text for m in found] == ["Maths test on Monday", "Is the test open book?"]

    files = await service.search(student, teacher.participant_id, MessageSearchFilters(message_type="file"))
    assert [m.attachment_name for m in files] == ["syllabus.pdf"]

    later = await service.search(
        student, teacher.participant_id, MessageSearchFilters(date_from=found[1].sent_at)
    )
    assert len(later) == 2


async def test_search_treats_wildcards_literally(db, teacher, student):
    service = MessageService(db)
    await service.send(teacher, student.participant_id, text("Scored 100% on the quiz"))
    await service.send(teacher, student.participant_id, text("Room 1000 is closed"))
    await service.send(teacher, student.participant_id, text("see file_name.txt"))
    await service.send(teacher, student.participant_id, text("see filename.txt"))

    percent = await service.search(student, teacher.participant_id, MessageSearchFilters(query="100%"))
    assert [m.text for m in percent] == ["Scored 100% on the quiz"]

    underscore = await service.search(student, teacher.participant_id, MessageSearchFilters(query="file_name"))
    assert [m.text for m in underscore] == ["see file_name.txt"]


async def test_history_limit_must_be_positive(db, teacher, student):
    service = MessageService(db)
    await service.send(teacher, student.participant_id, text("one"))

    with pytest.raises(ValidationError):
        await service.list_for_conversation(student, teacher.participant_id, limit=-1)
    with pytest.raises(ValidationError):
        await service.list_for_conversation(student, teacher.participant_id, limit=0)


@pytest.fixture
async def file_session_factory(tmp_path):
    # Separate connections per session so concurrent readers really race
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'messaging.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession, autoflush=False)
    await engine.dispose()


async def test_concurrent_mark_read_stamps_each_message_once(file_session_factory, feed, events, teacher, student):
    async with file_session_factory() as db:
        service = MessageService(db, feed)
        await service.send(teacher, student.participant_id, text("one"))
        await service.send(teacher, student.participant_id, text("two"))
    events.clear()

    first_marker = utcnow() + timedelta(minutes=1)
    second_marker = first_marker + timedelta(minutes=1)

    async def mark(up_to):
        async with file_session_factory() as db:
            return await MessageService(db, feed).mark_read(student, teacher.participant_id, up_to=up_to)

    counts = await asyncio.gather(mark(first_marker), mark(second_marker))
    assert sum(counts) == 2
    assert [e.type for e in events] == [ChangeType.UPDATE, ChangeType.UPDATE]

    async with file_session_factory() as db:
        result = await db.execute(select(Message.id, Message.read_at))
        stored = {message_id: as_utc(read_at) for message_id, read_at in result.all()}
    published = {UUID(e.row["message_id"]): as_utc(datetime.fromisoformat(e.row["read_at"])) for e in events}
    assert published == stored

    assert await mark(second_marker + timedelta(minutes=1)) == 0
    async with file_session_factory() as db:
        result = await db.execute(select(Message.id, Message.read_at))
        assert {message_id: as_utc(read_at) for message_id, read_at in result.all()} == stored
