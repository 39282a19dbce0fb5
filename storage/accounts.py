"""
storage/accounts.py

Users, roles and the login session.

Responsibilities
----------------
- Password hashing and verification (PBKDF2-HMAC-SHA256).
- Login / logout against the users collection. The signed-in user id lives
  in a per-client mapping (``st.session_state``) passed in by the caller.
- User and role administration with the referential checks the
  administration page relies on.
- Permission checks.

Password storage
----------------
Passwords are hashed with ``hashlib.pbkdf2_hmac`` (SHA-256, 260 000
iterations, 16-byte random salt) and stored on the user as a single
colon-delimited string ``"<hex_salt>:<hex_hash>"``.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import re
from typing import TYPE_CHECKING, Any, Iterable, Mapping, MutableMapping, Optional

from pipelines.errors import (
    AuthenticationError,
    NotFoundError,
    PermissionDeniedError,
    ReferentialIntegrityError,
    ValidationError,
)
from pipelines.rooms import ADMIN_ROLE_ID
from pipelines.schemas import Permission, Role, User, utcnow

if TYPE_CHECKING:
    from pipelines.storage import Database

logger = logging.getLogger(__name__)

ROLE_IN_USE_MESSAGE = "Ce rôle est assigné à des utilisateurs et ne peut pas être supprimé."

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# ---------------------------------------------------------------------------
# Seed roles
# ---------------------------------------------------------------------------

INITIAL_ROLES: tuple[Role, ...] = (
    Role(id=ADMIN_ROLE_ID, name="Administrateur(trice)", permissions=list(Permission)),
    Role(
        id="role_doctor",
        name="Médecin",
        permissions=[Permission.VIEW_PATIENTS, Permission.EDIT_PATIENTS, Permission.VIEW_STATISTICS],
    ),
    Role(
        id="role_technician",
        name="Technicien(ne)",
        permissions=[
            Permission.VIEW_PATIENTS,
            Permission.EDIT_PATIENTS,
            Permission.MOVE_PATIENTS,
            Permission.VIEW_HOT_LAB,
            Permission.EDIT_HOT_LAB,
        ],
    ),
    Role(
        id="role_reception",
        name="Réceptionniste",
        permissions=[Permission.VIEW_PATIENTS, Permission.CREATE_PATIENTS, Permission.MANAGE_APPOINTMENTS],
    ),
)

DEFAULT_ADMIN_EMAIL = "admin@mn.com"
DEFAULT_ADMIN_PASSWORD = "admin123"

SESSION_USER_KEY = "user_id"
SESSION_SINCE_KEY = "logged_in_at"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

_ITERATIONS = 260_000
_HASH_ALG = "sha256"


def _derive(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac(_HASH_ALG, password.encode("utf-8"), salt, _ITERATIONS)


def hash_password(password: str, salt: bytes | None = None) -> str:
    """Return ``"<hex_salt>:<hex_hash>"`` for *password*."""
    if salt is None:
        salt = os.urandom(16)
    return f"{salt.hex()}:{_derive(password, salt).hex()}"


def verify_password(password: str, blob: str) -> bool:
    """
    Verify *password* against a stored ``"<hex_salt>:<hex_hash>"`` blob.
    Uses ``hmac.compare_digest`` to prevent timing attacks.
    """
    try:
        hex_salt, hex_hash = blob.split(":", 1)
        salt = bytes.fromhex(hex_salt)
    except ValueError:
        return False
    return hmac.compare_digest(_derive(password, salt).hex(), hex_hash)


def default_admin() -> User:
    return User(
        id="user_admin",
        name="Admin",
        email=DEFAULT_ADMIN_EMAIL,
        password_hash=hash_password(DEFAULT_ADMIN_PASSWORD),
        role_id=ADMIN_ROLE_ID,
    )


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def find_user_by_email(db: "Database", email: str) -> Optional[User]:
    needle = (email or "").strip().lower()
    return next((u for u in db.users.all() if u.email.lower() == needle), None)


def role_of(db: "Database", user: Optional[User]) -> Optional[Role]:
    if user is None:
        return None
    return db.roles.find(user.role_id)


def permissions_for(db: "Database", user: Optional[User]) -> set[Permission]:
    role = role_of(db, user)
    return set(role.permissions) if role is not None else set()


def has_permission(db: "Database", user: Optional[User], permission: Permission) -> bool:
    return Permission(permission) in permissions_for(db, user)


def require_permission(db: "Database", user: Optional[User], permission: Permission) -> None:
    """
    Raises:
        PermissionDeniedError: If *user* lacks *permission*.
    """
    if not has_permission(db, user, permission):
        who = user.email if user is not None else "anonymous"
        logger.warning("Permission %s denied for %s", Permission(permission).value, who)
        raise PermissionDeniedError(
            "Vous n'avez pas la permission d'effectuer cette action.",
            {"permission": Permission(permission).value, "user": who},
        )


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


def authenticate(db: "Database", email: str, password: str) -> User:
    """
    Return the user matching *email* / *password*.

    Raises:
        AuthenticationError: On unknown email or wrong password.
    """
    user = find_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        logger.warning("Failed login for '%s'", email)
        db.audit("login_failure", target=(email or "").strip().lower())
        raise AuthenticationError("Email ou mot de passe incorrect.")
    return user


def login(db: "Database", email: str, password: str, session: MutableMapping[str, Any]) -> User:
    """
    Authenticate and record the user in *session*, the caller's own store
    (``st.session_state`` in the app).

    Raises:
        AuthenticationError: On unknown email or wrong password.
    """
    user = authenticate(db, email, password)
    session[SESSION_USER_KEY] = user.id
    session[SESSION_SINCE_KEY] = utcnow()
    db.audit("login_success", target=user.id, actor=user.id)
    logger.info("User %s logged in", user.email)
    return user


def logout(db: "Database", session: MutableMapping[str, Any]) -> None:
    user_id = session.pop(SESSION_USER_KEY, None)
    session.pop(SESSION_SINCE_KEY, None)
    if user_id:
        db.audit("logout", target=user_id, actor=user_id)


def current_user(db: "Database", session: Mapping[str, Any]) -> Optional[User]:
    """The user signed in through *session*, or None (also when that user was deleted)."""
    user_id = session.get(SESSION_USER_KEY)
    if not user_id:
        return None
    return db.users.find(user_id)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def _validate_user_fields(db: "Database", name: str, email: str, role_id: str, user_id: Optional[str]) -> None:
    errors: list[str] = []
    if not (name or "").strip():
        errors.append("Le nom est requis.")
    if not _EMAIL_RE.match((email or "").strip()):
        errors.append("L'adresse email est invalide.")
    else:
        other = find_user_by_email(db, email)
        if other is not None and other.id != user_id:
            errors.append("Cette adresse email est déjà utilisée.")
    if db.roles.find(role_id) is None:
        errors.append("Le rôle sélectionné n'existe pas.")
    if errors:
        raise ValidationError(errors)


def register_user(db: "Database", name: str, email: str, password: str, role_id: str) -> User:
    """
    Create a user from the registration form.

    Raises:
        ValidationError: Missing fields, short password, unknown role or an
            email that is already registered (case-insensitive).
    """
    _validate_user_fields(db, name, email, role_id, None)
    if len(password or "") < 6:
        raise ValidationError(["Le mot de passe doit contenir au moins 6 caractères."])

    user = User(
        name=name.strip(),
        email=email.strip().lower(),
        password_hash=hash_password(password),
        role_id=role_id,
    )
    db.users.add(user)
    db.audit("user_registered", target=user.id)
    logger.info("Registered user '%s' (role=%s)", user.email, role_id)
    return user


def save_user(
    db: "Database",
    user: User,
    new_password: Optional[str] = None,
    *,
    actor: Optional[User] = None,
) -> User:
    """Create or update *user*; *new_password* replaces the stored hash when given."""
    _validate_user_fields(db, user.name, user.email, user.role_id, user.id)
    if new_password:
        user = user.model_copy(update={"password_hash": hash_password(new_password)})
    elif db.users.find(user.id) is None and not user.password_hash:
        raise ValidationError(["Le mot de passe est requis."])
    user = user.model_copy(update={"email": user.email.strip().lower(), "name": user.name.strip()})

    db.users.upsert(user)
    db.audit("user_saved", target=user.id, actor=actor.id if actor else "system")
    logger.info("Saved user %s", user.email)
    return user


def delete_user(db: "Database", user_id: str, *, actor: Optional[User] = None) -> None:
    """
    Raises:
        NotFoundError: If *user_id* does not exist.
        ReferentialIntegrityError: If a user tries to delete themselves.
    """
    if actor is not None and actor.id == user_id:
        raise ReferentialIntegrityError(
            "Vous ne pouvez pas supprimer votre propre compte.", {"user_id": user_id}
        )
    db.users.remove(user_id)
    db.audit("user_deleted", target=user_id, actor=actor.id if actor else "system")
    logger.info("Deleted user %s", user_id)


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


def save_role(db: "Database", role: Role, *, actor: Optional[User] = None) -> Role:
    if not role.name.strip():
        raise ValidationError(["Le nom du rôle est requis."])
    clash = next((r for r in db.roles.all() if r.name.lower() == role.name.strip().lower() and r.id != role.id), None)
    if clash is not None:
        raise ValidationError(["Un rôle porte déjà ce nom."])

    role = role.model_copy(update={"name": role.name.strip(), "permissions": _unique(role.permissions)})
    db.roles.upsert(role)
    db.audit("role_saved", target=role.id, actor=actor.id if actor else "system")
    logger.info("Saved role %s (%d permissions)", role.id, len(role.permissions))
    return role


def _unique(perms: Iterable[Permission]) -> list[Permission]:
    seen: list[Permission] = []
    for p in perms:
        p = Permission(p)
        if p not in seen:
            seen.append(p)
    return seen


def delete_role(db: "Database", role_id: str, *, actor: Optional[User] = None) -> None:
    """
    Raises:
        NotFoundError: If *role_id* does not exist.
        ReferentialIntegrityError: If any user still has this role; the
            roles collection is left unchanged.
    """
    if db.roles.find(role_id) is None:
        raise NotFoundError("Role", role_id)
    holders = [u.id for u in db.users.all() if u.role_id == role_id]
    if holders:
        logger.warning("Refused to delete role %s held by %d user(s)", role_id, len(holders))
        raise ReferentialIntegrityError(ROLE_IN_USE_MESSAGE, {"role_id": role_id, "users": holders})
    db.roles.remove(role_id)
    db.audit("role_deleted", target=role_id, actor=actor.id if actor else "system")
    logger.info("Deleted role %s", role_id)
