"""
Authentication Service

WHY: Every sale, payment, movement and drawer transition is attributed to
an operator. Passwords are hashed with bcrypt; bearer tokens are handled
in session_service.py.
"""

from __future__ import annotations

import re

import bcrypt
from flask import current_app
from sqlalchemy import or_

from ..errors import ServiceError
from ..extensions import db
from ..models import User
from ..time_utils import utcnow


class PasswordValidationError(ServiceError):
    """Raised when a password doesn't meet strength requirements."""


class UserError(ServiceError):
    """Raised for user creation errors."""


def validate_password_strength(password: str) -> None:
    """
    Minimum 8 characters, at least one letter and one digit.

    Raises PasswordValidationError otherwise.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(username: str, email: str, password: str) -> User:
    username = (username or "").strip()
    email = (email or "").strip().lower()
    if not username:
        raise UserError("Username is required")
    if not email:
        raise UserError("Email is required")

    existing = db.session.query(User).filter(
        or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise UserError("Username or email already exists")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        is_active=True,
        created_at=utcnow(),
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(identifier: str, password: str) -> User | None:
    """
    Look up an active user by username or email and check the password.

    Returns the User on success (last_login_at updated), None otherwise.
    """
    identifier = (identifier or "").strip()
    if not identifier or not password:
        return None

    user = db.session.query(User).filter(
        or_(User.username == identifier, User.email == identifier.lower())
    ).first()
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
