"""Caller identity for the progress endpoints.

Tokens are minted elsewhere (admin sign-in, student PIN login); this module
only verifies them and loads the caller's profile. Admins send a bearer
token, students carry theirs in the ``student_token`` cookie.
"""
import logging
import os
from typing import Optional

from fastapi import Depends, Request
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from noteearly.database import get_db
from noteearly.errors import ForbiddenError, NotFoundError, UnauthorizedError
from noteearly.models.auth import CurrentUser, TokenData
from noteearly.models.schema import Profile, UserRole

logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("SECRET_KEY", "change_this_secret")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
STUDENT_TOKEN_COOKIE = "student_token"


def extract_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip()
    return request.cookies.get(STUDENT_TOKEN_COOKIE)


def decode_token(token: str) -> TokenData:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"Token verification failed: {e}")
        raise UnauthorizedError("Invalid or expired token")

    data = TokenData(sub=payload.get("sub") or payload.get("id"), role=payload.get("role"))
    if not data.sub:
        raise UnauthorizedError("Invalid token payload")
    return data


def get_current_user(request: Request, db: Session = Depends(get_db)) -> CurrentUser:
    token = extract_token(request)
    if not token:
        raise UnauthorizedError("No token provided")

    claims = decode_token(token)
    profile = db.query(Profile).filter(Profile.id == claims.sub).first()
    if not profile:
        raise NotFoundError("Profile not found for authenticated user")
    if claims.role and claims.role != profile.role:
        raise UnauthorizedError("Token role does not match profile")

    return CurrentUser(
        id=profile.id,
        role=profile.role,
        admin_id=profile.admin_id,
        is_super_admin=profile.is_super_admin,
    )


def get_current_student(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if user.role != UserRole.STUDENT:
        raise ForbiddenError("Student access required")
    return user


def get_current_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if user.role not in (UserRole.ADMIN, UserRole.SUPER_ADMIN):
        raise ForbiddenError("Admin or SuperAdmin privileges required")
    return user


def ensure_manages_student(db: Session, admin: CurrentUser, student_id: str) -> Profile:
    """Return the student profile if ``admin`` is allowed to act on it."""
    student = db.query(Profile).filter(Profile.id == student_id).first()
    if not student or not student.is_student:
        raise NotFoundError("Student not found")
    if not admin.is_super_admin and student.admin_id != admin.id:
        raise ForbiddenError("You do not manage this student.")
    return student
