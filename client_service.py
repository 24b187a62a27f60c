from __future__ import annotations

import datetime
import logging
from typing import Callable, Optional

from errors import (
    CLIENT_EMAIL_EXISTS,
    CLIENT_NOT_FOUND,
    CLIENT_PHONE_EXISTS,
    INVITATION_NOT_FOUND,
    ConflictError,
    InputError,
    NotFoundError,
)
from models import Invitation, Role, User, UserStats, validate_email
from passwords import PasswordHasher, generate_invitation_code, generate_starter_password
from storage import PrimaryStore

logger = logging.getLogger(__name__)


class ClientRegistry:
    """Creates and removes client accounts and issues starter credentials."""

    def __init__(
        self,
        store: PrimaryStore,
        hasher: PasswordHasher | None = None,
        clock: Callable[[], datetime.datetime] = datetime.datetime.now,
    ) -> None:
        self.store = store
        self.hasher = hasher or PasswordHasher()
        self.clock = clock

    @staticmethod
    def generate_starter_password() -> str:
        return generate_starter_password()

    def add_client(
        self,
        name: str,
        email: str,
        phone: Optional[str] = None,
        starter_password: Optional[str] = None,
    ) -> User:
        name = (name or "").strip()
        if not name:
            raise InputError("NAME_REQUIRED")
        try:
            email = validate_email(email)
        except ValueError:
            raise InputError("INVALID_EMAIL")
        phone = (phone or "").strip() or None
        if starter_password is not None and not starter_password.strip():
            raise InputError("STARTER_PASSWORD_REQUIRED")
        password = starter_password or generate_starter_password()

        existing = self.store.list_users()
        if any(u.email.lower() == email.lower() for u in existing):
            raise ConflictError(CLIENT_EMAIL_EXISTS)
        if phone and any(u.phone == phone for u in existing):
            raise ConflictError(CLIENT_PHONE_EXISTS)

        client = self.store.create_user(
            User(
                id="",
                name=name,
                email=email,
                phone=phone,
                role=Role.CLIENT,
                join_date=self.clock(),
                stats=UserStats(),
                password_hash=self.hasher.hash(password),
                password_changed=False,
            )
        )
        logger.info("created client %s", client.id)
        return client.model_copy(update={"starter_password": password})

    def list_clients(self, role: Role | str | None = None) -> list[User]:
        value = role.value if isinstance(role, Role) else role
        return self.store.list_users(value)

    def get_client(self, user_id: str) -> User:
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFoundError(CLIENT_NOT_FOUND)
        return user

    def remove_client(self, user_id: str) -> None:
        # workouts of the removed client stay in history as orphaned records
        if not self.store.delete_user(user_id):
            raise NotFoundError(CLIENT_NOT_FOUND)
        logger.info("removed client %s", user_id)

    def invite_client(
        self, name: Optional[str] = None, email: Optional[str] = None
    ) -> Invitation:
        if email:
            try:
                email = validate_email(email)
            except ValueError:
                raise InputError("INVALID_EMAIL")
        open_codes = {i.code for i in self.store.list_invitations()}
        code = generate_invitation_code()
        while code in open_codes:
            code = generate_invitation_code()
        invitation = self.store.create_invitation(
            Invitation(
                code=code,
                name=(name or "").strip() or None,
                email=email or None,
                created_at=self.clock(),
            )
        )
        logger.info("created invitation for %s", invitation.email or "anonymous client")
        return invitation

    def list_invitations(self) -> list[Invitation]:
        return self.store.list_invitations()

    def revoke_invitation(self, code: str) -> None:
        if not self.store.delete_invitation(code):
            raise NotFoundError(INVITATION_NOT_FOUND)

    def seed_trainer(self, name: str, email: str, password: str) -> User:
        """Create the trainer account or reset its password."""
        if not password:
            raise InputError("PASSWORD_REQUIRED")
        existing = self.store.find_user_by_email(email)
        if existing is not None:
            updated = existing.model_copy(
                update={
                    "role": Role.TRAINER,
                    "password_hash": self.hasher.hash(password),
                    "password_changed": True,
                }
            )
            self.store.update_user(updated)
            logger.info("reset trainer account %s", updated.id)
            return updated
        trainer = self.store.create_user(
            User(
                id="",
                name=name,
                email=email,
                role=Role.TRAINER,
                join_date=self.clock(),
                password_hash=self.hasher.hash(password),
                password_changed=True,
            )
        )
        logger.info("created trainer account %s", trainer.id)
        return trainer
