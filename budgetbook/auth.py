from typing import Optional

from budgetbook.backend import Backend
from budgetbook.domain import User
from budgetbook.errors import AuthError, NotAuthenticatedError
from budgetbook.logging_setup import get_logger
from budgetbook.persistence import utc_now
from budgetbook.security import hash_password, verify_password

logger = get_logger("budgetbook.auth")


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _user_from_row(row: dict) -> User:
    return User(id=str(row["id"]), name=row["name"], email=row["email"], created_at=row["created_at"])


class AuthProvider:
    """Email/password accounts kept in the backend's ``users`` table.

    Holds the identity of the one signed-in user; the session gate reads
    only that identity.
    """

    def __init__(self, backend: Backend):
        self.backend = backend
        self._user: Optional[User] = None

    def current_user(self) -> Optional[User]:
        return self._user

    def _find(self, email: str) -> Optional[dict]:
        rows = self.backend.select("users", email=_normalize_email(email))
        return rows[0] if rows else None

    def sign_up(self, email: str, password: str, name: str) -> User:
        email = _normalize_email(email)
        if not email or "@" not in email:
            raise AuthError(f"invalid email address: {email!r}")
        if not password or len(password) < 6:
            raise AuthError("password must be at least 6 characters")
        if not (name or "").strip():
            raise AuthError("name is required")
        if self._find(email) is not None:
            raise AuthError(f"an account for {email} already exists")

        row = self.backend.insert("users", {
            "name": name.strip(),
            "email": email,
            "password_hash": hash_password(password),
            "created_at": utc_now(),
        })
        self._user = _user_from_row(row)
        logger.info("signed up user %s", self._user.id)
        return self._user

    def sign_in(self, email: str, password: str) -> User:
        row = self._find(email)
        if row is None or not verify_password(password, row["password_hash"]):
            raise AuthError("invalid email or password")
        self._user = _user_from_row(row)
        logger.info("signed in user %s", self._user.id)
        return self._user

    def sign_out(self) -> None:
        if self._user is not None:
            logger.info("signed out user %s", self._user.id)
        self._user = None

    def update_profile(self, name: str) -> User:
        if self._user is None:
            raise NotAuthenticatedError()
        if not (name or "").strip():
            raise AuthError("name is required")
        self.backend.update("users", self._user.id, {"name": name.strip()})
        self._user = User(
            id=self._user.id, name=name.strip(), email=self._user.email,
            created_at=self._user.created_at,
        )
        return self._user
