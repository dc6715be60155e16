# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every sale and payment must be attributable to a user. Uses bcrypt for
password hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost from BCRYPT_ROUNDS, 12 by default)
- Minimum 8 characters with at least one letter and one digit
- Session tokens managed separately (see session_service.py)
- Customer portal users are bound to exactly one customer account
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import Customer, User
from ..models.auth import ROLE_CUSTOMER, ROLES


class PasswordValidationError(ValueError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Za-z]', password):
        raise PasswordValidationError("Password must contain at least one letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Hash password using bcrypt. Password is validated for strength before hashing."""
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    Returns True if password matches hash, False otherwise (including a
    malformed stored hash).
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    password: str,
    *,
    role: str,
    email: str | None = None,
    customer_id: int | None = None,
) -> User:
    """
    Create new user with bcrypt password hashing.

    Args:
        username: Unique username
        password: Password meeting strength requirements
        role: admin, staff or customer
        customer_id: Required for (and only allowed on) customer users

    Raises:
        ValueError: unknown role, duplicate username, bad customer binding
        PasswordValidationError: If password doesn't meet requirements
    """
    username = (username or "").strip()
    if not username:
        raise ValueError("username is required")
    if role not in ROLES:
        raise ValueError(f"role must be one of {', '.join(ROLES)}")

    if role == ROLE_CUSTOMER:
        if customer_id is None:
            raise ValueError("customer users require customer_id")
        if not db.session.get(Customer, customer_id):
            raise ValueError("Customer not found")
    elif customer_id is not None:
        raise ValueError("only customer users may be bound to a customer")

    existing = db.session.query(User).filter(User.username == username).first()
    if existing:
        raise ValueError("Username already exists")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
        customer_id=customer_id,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Authenticate user by username and password.

    Returns the User on success, None for unknown users, wrong passwords
    and deactivated accounts alike.
    """
    user = db.session.query(User).filter_by(username=(username or "").strip()).first()
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user
