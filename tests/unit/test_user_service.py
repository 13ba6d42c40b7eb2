"""
Name: User service tests

Responsibilities:
  - Account creation rules (email format and uniqueness, password length, role)
  - Partial updates, activation toggles
  - Reference counting that guards hard deletes
"""

import uuid

import pytest
from pydantic import ValidationError as SchemaValidationError

from mainthub.auth.security import verify_password
from mainthub.errors import ConflictError, NotFoundError, ValidationError
from mainthub.models.models import User
from mainthub.schemas.users import UserCreate, UserFilters, UserPagination, UserUpdate
from mainthub.services.user_service import normalize_email


pytestmark = pytest.mark.unit


def _create(users, **overrides):
    data = {"email": "Jane.Doe@Example.com", "name": " Jane Doe ", "password": "hunter22", "role": "supervisor"}
    data.update(overrides)
    return users.create_user(UserCreate(**data))


def test_create_user_normalizes_and_hashes(users, db):
    created = _create(users)

    assert created.email == "jane.doe@example.com"
    assert created.name == "Jane Doe"
    assert created.role.value == "supervisor"
    assert created.is_active is True
    assert created.last_login is None

    with db.session() as session:
        stored = session.get(User, created.id)
        assert stored.password_hash != "hunter22"
        assert verify_password("hunter22", stored.password_hash)


def test_create_user_defaults_to_operator(users):
    created = users.create_user(UserCreate(email="op@example.com", name="Op", password="secret1"))

    assert created.role.value == "operator"


def test_create_user_rejects_duplicates_case_insensitively(users):
    _create(users)

    with pytest.raises(ConflictError, match="already exists"):
        _create(users, email="JANE.DOE@example.com")


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"name": "   "}, "name is required"),
        ({"password": "12345"}, "at least 6"),
    ],
)
def test_create_user_validation(users, overrides, message):
    with pytest.raises(ValidationError, match=message):
        _create(users, **overrides)


def test_normalize_email_uses_email_validator():
    assert normalize_email("  Jane.Doe@Example.COM ") == "jane.doe@example.com"

    for bad in ("not-an-email", "a..b@example.com", "trailing.@example.com", ""):
        with pytest.raises(ValidationError, match="invalid email format"):
            normalize_email(bad)


@pytest.mark.parametrize("email", ["a..b@example.com", "no-at-sign.example.com"])
def test_user_schemas_reject_malformed_email(email):
    with pytest.raises(SchemaValidationError):
        UserCreate(email=email, name="X", password="secret99")
    with pytest.raises(SchemaValidationError):
        UserUpdate(email=email)


def test_create_user_revalidates_unchecked_email(users, db):
    data = UserCreate.model_construct(email="a..b@example.com", name="X", password="secret99", role="operator")

    with pytest.raises(ValidationError, match="invalid email format"):
        users.create_user(data)

    with db.session() as session:
        assert session.query(User).count() == 0


def test_update_user_partial_fields(users):
    created = _create(users)

    updated = users.update_user(created.id, UserUpdate(name="Jane Roe", profile_image="https://img/jane.png"))

    assert updated.name == "Jane Roe"
    assert updated.profile_image == "https://img/jane.png"
    assert updated.email == created.email
    assert updated.role == created.role


def test_update_user_email_conflict_and_missing(users):
    first = _create(users)
    _create(users, email="other@example.com")

    with pytest.raises(ConflictError):
        users.update_user(first.id, UserUpdate(email="other@example.com"))
    with pytest.raises(ValidationError, match="no fields to update"):
        users.update_user(first.id, UserUpdate())
    with pytest.raises(NotFoundError):
        users.update_user(uuid.uuid4(), UserUpdate(name="Ghost"))

    # keeping one's own email is not a conflict
    assert users.update_user(first.id, UserUpdate(email="jane.doe@example.com")).email == "jane.doe@example.com"


def test_deactivate_and_reactivate(users, make_user):
    target = make_user("operator")

    assert users.deactivate_user(target.id).is_active is False
    with pytest.raises(ValidationError, match="already inactive"):
        users.deactivate_user(target.id)

    assert users.reactivate_user(target.id).is_active is True
    with pytest.raises(ValidationError, match="already active"):
        users.reactivate_user(target.id)


def test_deactivation_keeps_existing_assignments(users, tasks, make_user, make_task):
    admin = make_user("admin")
    operator = make_user("operator")
    task = make_task(admin, assigned_to=operator.id)

    users.deactivate_user(operator.id, admin.id)

    assert tasks.get_task_by_id(task.id).assigned_to == operator.id


def test_lookup_by_id_and_email(users, make_user):
    user = make_user("operator", email="lookup@example.com")

    assert users.get_user_by_id(user.id) == user
    assert users.get_user_by_id("garbage") is None
    assert users.get_user_by_email("  LOOKUP@example.com ") == user
    assert users.get_user_by_email("nobody@example.com") is None


def test_list_users_filters_and_search(users, make_user):
    make_user("admin", name="Alice Admin", email="alice@example.com")
    make_user("operator", name="Bob Builder", email="bob@example.com")
    make_user("operator", name="Carol", email="carol@plant.org", is_active=False)

    operators = users.list_users(UserFilters(role="operator"))
    assert operators.total == 2

    active_ops = users.list_users(UserFilters(role="operator", is_active=True))
    assert [u.name for u in active_ops.items] == ["Bob Builder"]

    by_email = users.list_users(UserFilters(search="PLANT"))
    assert [u.name for u in by_email.items] == ["Carol"]

    sorted_page = users.list_users(pagination=UserPagination(sort_by="name", sort_order="asc", limit=2))
    assert [u.name for u in sorted_page.items] == ["Alice Admin", "Bob Builder"]
    assert sorted_page.total_pages == 2


def test_user_stats(users, make_user):
    make_user("admin")
    make_user("operator")
    make_user("operator", is_active=False)

    stats = users.get_user_stats()

    assert stats.total == 3
    assert stats.active == 2
    assert stats.inactive == 1
    assert stats.by_role == {"admin": 1, "supervisor": 0, "operator": 2}


def test_delete_user_without_references(users, make_user):
    user = make_user("operator")

    assert users.can_delete_user(user.id) is True
    users.delete_user(user.id)

    assert users.get_user_by_id(user.id) is None
    with pytest.raises(NotFoundError):
        users.delete_user(user.id)


def test_delete_user_with_task_references_conflicts(users, tasks, make_user, make_task):
    admin = make_user("admin")
    operator = make_user("operator")
    commenter = make_user("supervisor")
    task = make_task(admin, assigned_to=operator.id)
    tasks.add_task_note(task.id, "checked wiring", commenter.id)

    assert users.count_task_references(admin.id).created == 1
    assert users.count_task_references(operator.id).assigned == 1
    refs = users.count_task_references(commenter.id)
    assert (refs.notes, refs.total) == (1, 1)

    for user in (admin, operator, commenter):
        assert users.can_delete_user(user.id) is False
        with pytest.raises(ConflictError):
            users.delete_user(user.id)
        assert users.get_user_by_id(user.id) is not None
