"""User accounts and login sessions.

Passwords are stored as salted PBKDF2 hashes. A successful login issues an
opaque bearer token; the token identifies the user until logout.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import threading
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEMO_EMAIL = "user"
DEMO_PASSWORD = "password123"  # noqa: S105
_PBKDF2_ROUNDS = 100_000


@dataclass(frozen=True)
class User:
    """A registered user. Never carries the password."""

    id: str
    name: str
    email: str


@dataclass(frozen=True)
class _Account:
    user: User
    salt: bytes
    password_hash: bytes


class RegistrationError(ValueError):
    pass


def _hash_password(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode(), salt, _PBKDF2_ROUNDS)


class AuthService:
    """Registers users and maps bearer tokens to logged-in users."""

    def __init__(self, *, seed_demo_user: bool = True) -> None:
        self._lock = threading.Lock()
        self._accounts: dict[str, _Account] = {}
        self._tokens: dict[str, str] = {}
        if seed_demo_user:
            self._create_account("Test User", DEMO_EMAIL, DEMO_PASSWORD)

    def register(self, name: str, email: str, password: str) -> tuple[User, str]:
        """Create an account and log it in.

        Raises:
            RegistrationError: If the email is already registered.
        """
        user = self._create_account(name, email, password)
        logger.info("Registered user %s", user.id)
        return user, self._issue_token(user)

    def login(self, email: str, password: str) -> tuple[User, str] | None:
        """Return the user and a fresh token, or None if the credentials are wrong."""
        with self._lock:
            account = self._accounts.get(email)
        if account is None or not secrets.compare_digest(
            _hash_password(password, account.salt), account.password_hash
        ):
            return None
        logger.info("User %s logged in", account.user.id)
        return account.user, self._issue_token(account.user)

    def logout(self, token: str) -> None:
        with self._lock:
            user_id = self._tokens.pop(token, None)
        if user_id is not None:
            logger.info("User %s logged out", user_id)

    def user_for_token(self, token: str) -> User | None:
        with self._lock:
            user_id = self._tokens.get(token)
            if user_id is None:
                return None
            return next((a.user for a in self._accounts.values() if a.user.id == user_id), None)

    def is_logged_in(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._tokens.values()

    # -- Internal -----------------------------------------------------------

    def _create_account(self, name: str, email: str, password: str) -> User:
        salt = secrets.token_bytes(16)
        account = _Account(
            user=User(id=secrets.token_hex(8), name=name, email=email),
            salt=salt,
            password_hash=_hash_password(password, salt),
        )
        with self._lock:
            if email in self._accounts:
                raise RegistrationError("An account with this email already exists.")
            self._accounts[email] = account
        return account.user

    def _issue_token(self, user: User) -> str:
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._tokens[token] = user.id
        return token


class UserAuthGate:
    """Auth gate bound to one user: open while that user has any active login."""

    def __init__(self, auth: AuthService, user_id: str) -> None:
        self._auth = auth
        self._user_id = user_id

    def current_user_id(self) -> str | None:
        return self._user_id if self._auth.is_logged_in(self._user_id) else None
