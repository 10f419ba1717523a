# Overview: Service-layer operations for auth; user creation, password hashing and login.

"""
Authentication Service with Multi-Tenant Support

WHY: Every settlement action must be attributable. Uses bcrypt for
password hashing and validates password strength.

MULTI-TENANT: Users belong to exactly one company (company_id).
Username/email uniqueness is company-scoped.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters with upper, lower, digit and special char
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app, has_app_context

from ..extensions import db
from ..models import User, Role, UserRole, Company, Branch
from repairdesk.time_utils import utcnow


DEFAULT_BCRYPT_ROUNDS = 12


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Hash password using bcrypt after validating its strength."""
    validate_password_strength(password)
    rounds = DEFAULT_BCRYPT_ROUNDS
    if has_app_context():
        rounds = current_app.config.get("BCRYPT_ROUNDS", DEFAULT_BCRYPT_ROUNDS)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. A malformed stored hash verifies as False.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    company_id: int,
    branch_id: int | None = None,
    name: str | None = None
) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises:
        ValueError: If company doesn't exist or is inactive, user exists,
            or branch doesn't belong to the company
        PasswordValidationError: If password doesn't meet requirements
    """
    company = db.session.get(Company, company_id)
    if not company:
        raise ValueError("Company not found")
    if not company.is_active:
        raise ValueError("Company is not active")

    existing = db.session.query(User).filter(
        User.company_id == company_id,
        db.or_(User.username == username, User.email == email)
    ).first()

    if existing:
        raise ValueError("Username or email already exists in this company")

    if branch_id is not None:
        branch = db.session.get(Branch, branch_id)
        if not branch or branch.company_id != company_id:
            raise ValueError("Branch does not belong to this company")

    password_hash = hash_password(password)

    user = User(
        company_id=company_id,
        branch_id=branch_id,
        username=username,
        email=email,
        name=name,
        password_hash=password_hash,
    )

    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str, company_id: int | None = None) -> User | None:
    """
    Authenticate user with username (or email) and password.

    If company_id is provided, authentication is scoped to that company.

    Returns User if credentials valid and company active, None otherwise.
    Updates last_login_at on success.
    """
    query = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    )

    if company_id is not None:
        query = query.filter(User.company_id == company_id)

    user = query.first()

    if not user:
        return None

    company = db.session.get(Company, user.company_id)
    if not company or not company.is_active:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def assign_role(user_id: int, role_name: str) -> UserRole:
    """Assign one of the user's company roles; no-op if already held."""
    user = db.session.get(User, user_id)
    if not user:
        raise ValueError("User not found")

    role = db.session.query(Role).filter_by(company_id=user.company_id, name=role_name).first()
    if not role:
        raise ValueError(f"Role {role_name} not found")

    existing = db.session.query(UserRole).filter_by(
        user_id=user_id,
        role_id=role.id
    ).first()

    if existing:
        return existing

    user_role = UserRole(user_id=user_id, role_id=role.id)

    db.session.add(user_role)
    db.session.commit()
    return user_role
