import pytest

from pipelines.errors import (
    AuthenticationError,
    NotFoundError,
    PermissionDeniedError,
    ReferentialIntegrityError,
    ValidationError,
)
from pipelines.schemas import Permission, Role
from pipelines.storage import Database
from storage.accounts import (
    DEFAULT_ADMIN_EMAIL,
    DEFAULT_ADMIN_PASSWORD,
    ROLE_IN_USE_MESSAGE,
    SESSION_USER_KEY,
    current_user,
    delete_role,
    delete_user,
    has_permission,
    hash_password,
    login,
    logout,
    permissions_for,
    register_user,
    require_permission,
    save_role,
    save_user,
    verify_password,
)


def test_password_hash_round_trip():
    blob = hash_password("hunter22")
    assert ":" in blob
    assert "hunter22" not in blob
    assert verify_password("hunter22", blob)
    assert not verify_password("hunter23", blob)
    assert not verify_password("hunter22", "not-a-hash")


def test_seeded_admin_can_log_in(db):
    session = {}
    user = login(db, DEFAULT_ADMIN_EMAIL.upper(), DEFAULT_ADMIN_PASSWORD, session)
    assert user.id == "user_admin"
    assert session[SESSION_USER_KEY] == "user_admin"
    assert current_user(db, session) == user
    assert db.audit_log(1)[0].action == "login_success"


def test_sessions_are_per_client(db, settings):
    first, second = {}, {}
    login(db, DEFAULT_ADMIN_EMAIL, DEFAULT_ADMIN_PASSWORD, first)
    assert current_user(db, second) is None
    assert current_user(Database(settings=settings), {}) is None
    assert not list(settings.data_dir.glob("*session*"))

    register_user(db, "Tech", "tech@mn.com", "secret1", "role_technician")
    login(db, "tech@mn.com", "secret1", second)
    logout(db, first)
    assert current_user(db, first) is None
    assert current_user(db, second).email == "tech@mn.com"


def test_wrong_password_is_refused_and_audited(db):
    session = {}
    with pytest.raises(AuthenticationError):
        login(db, DEFAULT_ADMIN_EMAIL, "nope", session)
    assert current_user(db, session) is None
    assert session == {}
    assert db.audit_log(1)[0].action == "login_failure"


def test_logout_clears_session(db):
    session = {"view_state": "kept"}
    login(db, DEFAULT_ADMIN_EMAIL, DEFAULT_ADMIN_PASSWORD, session)
    logout(db, session)
    assert current_user(db, session) is None
    assert session == {"view_state": "kept"}
    assert db.audit_log(1)[0].action == "logout"


def test_session_of_deleted_user_is_anonymous(db):
    session = {}
    user = register_user(db, "Tech", "tech@mn.com", "secret1", "role_technician")
    login(db, "tech@mn.com", "secret1", session)
    delete_user(db, user.id)
    assert current_user(db, session) is None


def test_register_validates_and_normalises(db):
    user = register_user(db, "  Nina ", "Nina@MN.com", "secret1", "role_doctor")
    assert user.email == "nina@mn.com"
    assert user.name == "Nina"

    with pytest.raises(ValidationError) as exc:
        register_user(db, "Other", "NINA@mn.com", "secret1", "role_doctor")
    assert exc.value.messages == ["Cette adresse email est déjà utilisée."]

    with pytest.raises(ValidationError):
        register_user(db, "Short", "short@mn.com", "12345", "role_doctor")

    with pytest.raises(ValidationError) as exc:
        register_user(db, "", "bad", "secret1", "role_missing")
    assert len(exc.value.messages) == 3


def test_save_user_rehashes_new_password(db, make_user):
    user = make_user("role_reception", "desk@mn.com")
    saved = save_user(db, user.model_copy(update={"name": "Desk"}), new_password="another1")
    assert db.users.get(user.id).name == "Desk"
    assert verify_password("another1", saved.password_hash)


def test_cannot_delete_yourself(db, admin):
    with pytest.raises(ReferentialIntegrityError):
        delete_user(db, admin.id, actor=admin)
    assert admin.id in db.users


def test_permissions(db, admin, make_user):
    tech = make_user("role_technician")
    assert permissions_for(db, admin) == set(Permission)
    assert has_permission(db, tech, Permission.EDIT_HOT_LAB)
    assert not has_permission(db, tech, Permission.MANAGE_USERS)
    assert permissions_for(db, None) == set()
    with pytest.raises(PermissionDeniedError):
        require_permission(db, tech, Permission.MANAGE_ROLES)


def test_role_in_use_cannot_be_deleted(db, make_user):
    make_user("role_doctor")
    before = db.roles.all()
    with pytest.raises(ReferentialIntegrityError) as exc:
        delete_role(db, "role_doctor")
    assert exc.value.reason == ROLE_IN_USE_MESSAGE
    assert db.roles.all() == before


def test_unused_role_round_trip(db, admin):
    role = save_role(db, Role(name=" Physicien ", permissions=[Permission.VIEW_HOT_LAB, Permission.VIEW_HOT_LAB]),
                     actor=admin)
    assert role.name == "Physicien"
    assert role.permissions == [Permission.VIEW_HOT_LAB]

    with pytest.raises(ValidationError):
        save_role(db, Role(name="physicien"))

    delete_role(db, role.id, actor=admin)
    assert role.id not in db.roles
    with pytest.raises(NotFoundError):
        delete_role(db, role.id)
