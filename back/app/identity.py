"""
Identity provider boundary.

Accounts, passwords and session revocation live behind ``IdentityProvider``.
The rest of the application only ever sees a ``Principal``; it never touches
password hashes. ``LocalIdentityProvider`` keeps accounts in the
``Credential`` table and hashes with bcrypt.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import bcrypt
from sqlmodel import Session, select

from .models import Credential

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
# bcrypt only hashes the first 72 bytes and rejects longer input
MAX_PASSWORD_BYTES = 72


class IdentityError(Exception):
    """Raised by the provider; the message is safe to show to the user verbatim."""


@dataclass(frozen=True)
class Principal:
    id: int
    email: str
    token_version: int


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"), hashed_password.encode("utf-8")
        )
    except (ValueError, TypeError):
        return False


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _principal(credential: Credential) -> Principal:
    return Principal(id=credential.id, email=credential.email, token_version=credential.token_version)


class IdentityProvider(ABC):
    """Interface of the external identity collaborator."""

    @abstractmethod
    def create_account(self, email: str, password: str) -> Principal:
        ...

    @abstractmethod
    def delete_account(self, principal_id: int) -> None:
        ...

    @abstractmethod
    def authenticate(self, email: str, password: str) -> Principal:
        ...

    @abstractmethod
    def sign_out(self, principal_id: int) -> None:
        ...

    @abstractmethod
    def session_is_current(self, principal_id: int, token_version: int) -> bool:
        ...


class LocalIdentityProvider(IdentityProvider):
    """Identity provider backed by the application database.

    Every method commits on its own so that a later failure in the caller
    (e.g. profile creation during registration) can be compensated with
    ``delete_account``.
    """

    def __init__(self, session: Session):
        self.session = session

    def _get(self, principal_id: int) -> Credential | None:
        return self.session.get(Credential, principal_id)

    def create_account(self, email: str, password: str) -> Principal:
        email = _normalize_email(email or "")
        if "@" not in email:
            raise IdentityError("Unable to validate email address: invalid format")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise IdentityError(f"Password should be at least {MIN_PASSWORD_LENGTH} characters")
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise IdentityError(f"Password should be at most {MAX_PASSWORD_BYTES} bytes")

        existing = self.session.exec(select(Credential).where(Credential.email == email)).first()
        if existing:
            raise IdentityError("User already registered")

        credential = Credential(email=email, hashed_password=hash_password(password))
        self.session.add(credential)
        self.session.commit()
        self.session.refresh(credential)
        logger.info(f"Identity account created for {email}")
        return _principal(credential)

    def delete_account(self, principal_id: int) -> None:
        credential = self._get(principal_id)
        if credential is None:
            return
        self.session.delete(credential)
        self.session.commit()
        logger.info(f"Identity account {principal_id} deleted")

    def authenticate(self, email: str, password: str) -> Principal:
        credential = self.session.exec(
            select(Credential).where(Credential.email == _normalize_email(email or ""))
        ).first()
        # Same message for unknown email and wrong password
        if not credential or not verify_password(password or "", credential.hashed_password):
            raise IdentityError("Invalid login credentials")
        return _principal(credential)

    def sign_out(self, principal_id: int) -> None:
        credential = self._get(principal_id)
        if credential is None:
            return
        credential.token_version += 1
        self.session.add(credential)
        self.session.commit()

    def session_is_current(self, principal_id: int, token_version: int) -> bool:
        credential = self._get(principal_id)
        return credential is not None and credential.token_version == token_version
