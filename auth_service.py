"""Login, sessions and role checks.

Login resolution order:

1. an account with the email exists: the password must verify against its
   stored credential, otherwise ``INVALID_PASSWORD``;
2. an open invitation matches the email, or the password equals its code:
   the invitation is consumed and a client account is provisioned whose
   starter credential is the password used for this login;
3. otherwise ``USER_NOT_INVITED``.
"""

from __future__ import annotations

import datetime
import logging
import secrets
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from errors import (
    FORBIDDEN,
    INVALID_PASSWORD,
    INVITATION_NOT_FOUND,
    NOT_AUTHENTICATED,
    ROLE_SWITCH_DISABLED,
    USER_NOT_INVITED,
    AuthenticationError,
    InputError,
    NotFoundError,
    PermissionDeniedError,
)
from models import Invitation, Role, User, UserStats, validate_email
from passwords import PasswordHasher
from storage import PrimaryStore

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


@dataclass
class AuthSession:
    token: str
    user: User
    created_at: datetime.datetime = field(default_factory=datetime.datetime.now)

    @property
    def role(self) -> Role:
        return self.user.role


class AuthGate:
    """Tracks logged in sessions and guards trainer-only operations."""

    def __init__(
        self,
        store: PrimaryStore,
        hasher: PasswordHasher | None = None,
        clock: Callable[[], datetime.datetime] = datetime.datetime.now,
        allow_role_switch: bool = False,
    ) -> None:
        self.store = store
        self.hasher = hasher or PasswordHasher()
        self.clock = clock
        self.allow_role_switch = allow_role_switch
        self._sessions: dict[str, AuthSession] = {}
        self._lock = threading.RLock()

    def _open_session(self, user: User) -> AuthSession:
        session = AuthSession(secrets.token_urlsafe(24), user, self.clock())
        with self._lock:
            self._sessions[session.token] = session
        return session

    def _matching_invitation(self, email: str, password: str) -> Optional[Invitation]:
        wanted = email.lower()
        for invitation in self.store.list_invitations():
            if invitation.email and invitation.email.lower() == wanted:
                return invitation
            if password and password == invitation.code:
                return invitation
        return None

    def login(self, email: str, password: str) -> AuthSession:
        if not email or not password:
            raise InputError("CREDENTIALS_REQUIRED")
        try:
            email = validate_email(email)
        except ValueError:
            raise InputError("INVALID_EMAIL")

        user = self.store.find_user_by_email(email)
        if user is not None:
            if not self.hasher.verify(password, user.password_hash):
                logger.warning("invalid password for user %s", user.id)
                raise AuthenticationError(INVALID_PASSWORD)
            logger.info("user %s logged in as %s", user.id, user.role.value)
            return self._open_session(user)

        invitation = self._matching_invitation(email, password)
        if invitation is None:
            logger.warning("login attempt without account or invitation")
            raise AuthenticationError(USER_NOT_INVITED)
        try:
            user = self.store.consume_invitation(
                invitation.code,
                User(
                    id="",
                    name=invitation.name or email.split("@")[0],
                    email=email,
                    role=Role.CLIENT,
                    join_date=self.clock(),
                    stats=UserStats(),
                    password_hash=self.hasher.hash(password),
                    password_changed=False,
                ),
            )
        except NotFoundError as e:
            # consumed concurrently by another login
            if e.code == INVITATION_NOT_FOUND:
                raise AuthenticationError(USER_NOT_INVITED)
            raise
        logger.info("provisioned client %s from invitation", user.id)
        return self._open_session(user)

    def logout(self, token: str | None) -> None:
        with self._lock:
            self._sessions.pop(token or "", None)

    def revoke_user(self, user_id: str) -> int:
        """Drop every session of ``user_id``; returns how many were open."""
        with self._lock:
            tokens = [t for t, s in self._sessions.items() if s.user.id == user_id]
            for token in tokens:
                del self._sessions[token]
        return len(tokens)

    def session(self, token: str | None) -> Optional[AuthSession]:
        with self._lock:
            return self._sessions.get(token or "")

    def is_authenticated(self, token: str | None) -> bool:
        return self.session(token) is not None

    def role(self, token: str | None) -> Optional[Role]:
        session = self.session(token)
        return session.role if session else None

    def require_authenticated(self, token: str | None) -> User:
        session = self.session(token)
        if session is None:
            raise AuthenticationError(NOT_AUTHENTICATED)
        return session.user

    def require_trainer(self, token: str | None) -> User:
        user = self.require_authenticated(token)
        if not user.is_trainer:
            raise PermissionDeniedError(FORBIDDEN)
        return user

    def must_change_password(self, token: str | None) -> bool:
        user = self.require_authenticated(token)
        return user.role == Role.CLIENT and not user.password_changed

    def change_password(
        self, token: str | None, current_password: str, new_password: str
    ) -> User:
        session_user = self.require_authenticated(token)
        if not current_password or not new_password:
            raise InputError("PASSWORD_REQUIRED")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise InputError("PASSWORD_TOO_SHORT")
        if new_password == current_password:
            raise InputError("PASSWORD_UNCHANGED")
        stored = self.store.get_user(session_user.id) or session_user
        if not self.hasher.verify(current_password, stored.password_hash):
            raise AuthenticationError(INVALID_PASSWORD)
        updated = stored.model_copy(
            update={
                "password_hash": self.hasher.hash(new_password),
                "password_changed": True,
                "starter_password": None,
            }
        )
        self.store.update_user(updated)
        with self._lock:
            for session in self._sessions.values():
                if session.user.id == updated.id:
                    session.user = updated
        logger.info("user %s changed password", updated.id)
        return updated

    def switch_role(self, token: str | None) -> User:
        """Toggle client/trainer on the session user, development builds only."""
        session_user = self.require_authenticated(token)
        if not self.allow_role_switch:
            raise PermissionDeniedError(ROLE_SWITCH_DISABLED)
        role = Role.TRAINER if session_user.role == Role.CLIENT else Role.CLIENT
        updated = session_user.model_copy(update={"role": role})
        with self._lock:
            self._sessions[token].user = updated
        return updated
