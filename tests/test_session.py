import pytest
from sqlalchemy import func, select

from app.core.exceptions import PermissionDeniedError
from app.models.chat import Message
from app.schemas.messaging_schemas import SendMessageRequest
from app.services.chat.chat_request_service import ChatRequestWorkflow
from app.services.chat.group_service import GroupService
from app.services.chat.session import MessagingSession

from .conftest import Recorder


@pytest.fixture
def open_session(directory, session_factory, feed):
    async def start(participant):
        recorder = Recorder()
        session = MessagingSession(participant, directory, session_factory, feed, recorder)
        await session.start()
        return session, recorder

    return start


@pytest.fixture
async def close_sessions():
    sessions = []
    yield sessions
    for session in sessions:
        await session.close()


def summary_for(recorder, key):
    for conversation in recorder.last_conversations():
        if conversation["key"] == str(key):
            return conversation
    return None


async def test_start_pushes_an_empty_list_and_goes_online(open_session, close_sessions, teacher, student):
    teacher_session, teacher_frames = await open_session(teacher)
    close_sessions.append(teacher_session)
    assert teacher_frames.of_type("conversations") == [{"type": "conversations", "conversations": []}]

    student_session, _ = await open_session(student)
    close_sessions.append(student_session)
    assert teacher_session.presence.is_online(student.participant_id)


async def test_message_updates_both_sides_and_read_receipt(open_session, close_sessions, teacher, student):
    teacher_session, teacher_frames = await open_session(teacher)
    student_session, student_frames = await open_session(student)
    close_sessions.extend([teacher_session, student_session])

    sent = await teacher_session.send_message(
        SendMessageRequest(receiver_id=student.participant_id, text="Please revise chapter 4")
    )

    on_student = summary_for(student_frames, teacher.participant_id)
    assert on_student["unread_count"] == 1
    assert on_student["display_name"] == "Ms. Rao"
    assert on_student["is_online"] is True
    assert on_student["last_message_preview"] == "Please revise chapter 4"
    assert summary_for(teacher_frames, student.participant_id)["unread_count"] == 0

    assert await student_session.mark_read(teacher.participant_id) == 1
    assert summary_for(student_frames, teacher.participant_id)["unread_count"] == 0
    assert teacher_session.log.get(sent.message_id).read_at is not None

    history = await student_session.history(teacher.participant_id)
    assert [m.message_id for m in history] == [sent.message_id]


async def test_student_cannot_message_student_without_consent(db, open_session, close_sessions, student, other_student, profile_of):
    session, _ = await open_session(student)
    close_sessions.append(session)

    with pytest.raises(PermissionDeniedError):
        await session.send_message(SendMessageRequest(receiver_id=other_student.participant_id, text="hey"))

    result = await db.execute(select(func.count()).select_from(Message))
    assert result.scalar() == 0

    chat_request = await ChatRequestWorkflow(db).request(student, profile_of(other_student))
    await ChatRequestWorkflow(db).accept(other_student, chat_request.id)

    sent = await session.send_message(SendMessageRequest(receiver_id=other_student.participant_id, text="hey"))
    assert sent.receiver_id == other_student.participant_id


async def test_chat_request_is_pushed_to_the_receiver(db, feed, open_session, close_sessions, student, other_student, profile_of):
    receiver_session, receiver_frames = await open_session(other_student)
    close_sessions.append(receiver_session)

    chat_request = await ChatRequestWorkflow(db, feed).request(student, profile_of(other_student))

    [frame] = receiver_frames.of_type("chat_request")
    assert frame["request"]["request_id"] == str(chat_request.id)
    assert frame["request"]["status"] == "pending"

    await ChatRequestWorkflow(db, feed).accept(other_student, chat_request.id)
    assert [f["request"]["status"] for f in receiver_frames.of_type("chat_request")] == ["pending", "accepted"]


async def test_typing_indicator_reaches_the_counterpart(open_session, close_sessions, teacher, student):
    teacher_session, teacher_frames = await open_session(teacher)
    student_session, _ = await open_session(student)
    close_sessions.extend([teacher_session, student_session])

    await teacher_session.send_message(SendMessageRequest(receiver_id=student.participant_id, text="Any questions?"))

    await student_session.keystroke(teacher.participant_id)
    assert summary_for(teacher_frames, student.participant_id)["is_typing"] is True

    await student_session.stop_typing(teacher.participant_id)
    assert summary_for(teacher_frames, student.participant_id)["is_typing"] is False


async def test_new_group_appears_for_members(db, feed, directory, open_session, close_sessions, teacher, student, other_student):
    student_session, student_frames = await open_session(student)
    close_sessions.append(student_session)

    group = await GroupService(db, feed).create_group(
        teacher, "Debate team", [student.participant_id, other_student.participant_id], directory
    )

    assert group.id in student_session.groups
    summary = summary_for(student_frames, group.id)
    assert summary["is_group"] is True
    assert summary["display_name"] == "Debate team"
    assert summary["last_message_preview"] == 'Group "Debate team" created'
    assert summary["unread_count"] == 1

    assert await student_session.mark_read(group.id) == 1
    assert summary_for(student_frames, group.id)["unread_count"] == 0


async def test_close_marks_participant_offline(open_session, close_sessions, teacher, student):
    teacher_session, _ = await open_session(teacher)
    close_sessions.append(teacher_session)
    student_session, _ = await open_session(student)

    assert teacher_session.presence.is_online(student.participant_id)
    await student_session.close()
    assert not teacher_session.presence.is_online(student.participant_id)
