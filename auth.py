"""
auth.py
Identity gate: admin login (bcrypt hashing, verify, change password) and
associate lookup by CPF.

This avoids passlib's bcrypt backend auto-detection issues on some Python 3.13 Windows setups.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import bcrypt

from db import Database, MemberRepository
from errors import LookupFailed, RepositoryUnavailable, ValidationError
from models import Member

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdminIdentity:
    username: str


def _to_bcrypt_secret(password: str) -> bytes:
    """
    bcrypt only uses the first 72 BYTES of the password.
    We truncate to 72 bytes to avoid ValueError and to make behavior explicit.
    """
    pw = password.encode("utf-8")
    if len(pw) > 72:
        pw = pw[:72]
    return pw


def hash_password(password: str, rounds: int = 12) -> str:
    """
    Returns a bcrypt hash as a UTF-8 string (stored in SQLite).
    """
    secret = _to_bcrypt_secret(password)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(secret, salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    secret = _to_bcrypt_secret(password)
    stored = password_hash.encode("utf-8")
    return bcrypt.checkpw(secret, stored)


def get_admin_by_username(database: Database, username: str):
    return database.fetch_one("SELECT * FROM admin_users WHERE username = ?", (username,))


def authenticate_admin(database: Database, username: str, password: str) -> AdminIdentity | None:
    """Return the admin identity, or None when the credentials are rejected."""
    username = username.strip()
    admin = get_admin_by_username(database, username)
    if not admin or not verify_password(password, admin["password_hash"]):
        logger.info("Rejected admin login for %r", username)
        return None
    return AdminIdentity(username=admin["username"])


def change_password(database: Database, username: str, new_password: str, rounds: int = 12) -> None:
    new_hash = hash_password(new_password, rounds=rounds)
    database.execute(
        "UPDATE admin_users SET password_hash = ? WHERE username = ?",
        (new_hash, username),
    )
    database.clear_force_password_change()


def authenticate_associate(repository: MemberRepository, cpf: str) -> Member | None:
    """
    Look up the member whose CPF matches exactly. Returns the first match, or
    None when nobody has that CPF. Store failures raise LookupFailed.
    """
    cpf = (cpf or "").strip()
    if not cpf:
        raise ValidationError(["Por favor, insira o seu CPF."])
    try:
        matches = repository.find_by_field("cpf", cpf)
    except RepositoryUnavailable as exc:
        raise LookupFailed("Erro ao verificar CPF. Tente novamente.") from exc
    return matches[0] if matches else None
