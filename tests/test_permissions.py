import pytest

from app.services.chat.participants import Role, requires_consent


@pytest.mark.parametrize("receiver", list(Role))
def test_staff_and_parents_never_need_consent(receiver):
    for sender in (Role.ADMIN, Role.TEACHER, Role.PARENT):
        assert requires_consent(sender, receiver) is False


def test_student_needs_consent_only_for_other_students():
    assert requires_consent(Role.STUDENT, Role.STUDENT) is True
    assert requires_consent(Role.STUDENT, Role.TEACHER) is False
    assert requires_consent(Role.STUDENT, Role.ADMIN) is False
    assert requires_consent(Role.STUDENT, Role.PARENT) is False


def test_unknown_role_is_rejected():
    with pytest.raises(ValueError):
        requires_consent("janitor", Role.STUDENT)
