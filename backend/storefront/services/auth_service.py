# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Account registration and password authentication.

Passwords are hashed with bcrypt (cost factor 12). Accounts carry a role
(customer/admin) and a customer_code used to stamp orders.
"""

import re

import bcrypt
from flask import current_app

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..models import User
from ..models.auth import ROLE_CUSTOMER, VALID_ROLES
from storefront.time_utils import utcnow

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
CUSTOMER_CODE_RE = re.compile(r"^[A-Z0-9]+$")


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter, one lowercase letter and one digit
    """
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe check; a malformed stored hash never authenticates."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    name: str,
    email: str,
    password: str,
    role: str = ROLE_CUSTOMER,
    customer_code: str | None = None,
    phone: str | None = None,
) -> User:
    """
    Create an account.

    Raises ValidationError for malformed input and ConflictError when the
    email or customer code is taken. customer_code defaults to
    CUST<id zero-padded to 6>.
    """
    name = (name or "").strip()
    email = (email or "").strip().lower()

    if not name:
        raise ValidationError("name is required")
    if len(name) > 100:
        raise ValidationError("name exceeds max length 100")
    if not EMAIL_RE.match(email):
        raise ValidationError("A valid email is required")
    if role not in VALID_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(VALID_ROLES)}")

    if customer_code is not None:
        customer_code = customer_code.strip().upper()
        if not CUSTOMER_CODE_RE.match(customer_code):
            raise ValidationError("customer_code must be upper-case alphanumeric")

    if db.session.query(User).filter(User.email == email).first():
        raise ConflictError("Email is already registered")
    if customer_code and db.session.query(User).filter(User.customer_code == customer_code).first():
        raise ConflictError("Customer code is already in use")

    user = User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        role=role,
        customer_code=customer_code,
        phone=phone,
    )
    db.session.add(user)
    db.session.flush()

    if not user.customer_code:
        user.customer_code = f"CUST{user.id:06d}"

    db.session.commit()
    current_app.logger.info("Registered user %s (role=%s)", user.id, user.role)
    return user


def authenticate(email: str, password: str) -> User | None:
    """Returns the active user for the credentials, or None."""
    user = db.session.query(User).filter(
        User.email == (email or "").strip().lower(),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
