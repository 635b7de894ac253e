import logging
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

import config
from exceptions import AuthError, NotFoundError, ValidationError
from store import AdminStore

logger = logging.getLogger(__name__)

# JWT Configuration
ALGORITHM = "HS256"

# Missing credentials are reported as AuthError (401), not FastAPI's default 403.
security = HTTPBearer(auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash using bcrypt.

    Args:
        plain_password: The plain text password to verify
        hashed_password: The bcrypt hashed password to check against

    Returns:
        bool: True if password matches, False otherwise
    """
    try:
        return bcrypt.checkpw(
            plain_password.encode('utf-8'),
            hashed_password.encode('utf-8')
        )
    except ValueError as e:
        logger.error(f"Error verifying password: {e}")
        return False


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt with salt.

    Args:
        password: The plain text password to hash

    Returns:
        str: The bcrypt hashed password
    """
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[str]:
    """Verify a JWT token and return the username."""
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    return payload.get("sub")


async def get_current_admin(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> str:
    """Resolve the bearer token to an admin username or fail closed."""
    if credentials is None:
        raise AuthError("Missing bearer token")
    username = verify_token(credentials.credentials)
    if username is None:
        raise AuthError("Invalid or expired token")
    return username


def authenticate_admin(admins: AdminStore, username: str, password: str) -> dict:
    admin = admins.find_by_username(username)
    if not admin or not verify_password(password, admin["hashedPassword"]):
        raise AuthError(f"Failed login for '{username}'", public_message="Incorrect username or password")
    if not admin.get("isActive", True):
        raise AuthError(f"Login for disabled account '{username}'", public_message="Account disabled")
    return admin


def change_password(admins: AdminStore, username: str, current_password: str, new_password: str):
    admin = admins.find_by_username(username)
    if not admin:
        raise NotFoundError("Admin user not found")
    if not verify_password(current_password, admin["hashedPassword"]):
        raise ValidationError("Current password is incorrect")
    admins.update_one(admin["_id"], {"hashedPassword": get_password_hash(new_password)})
    logger.info(f"Password changed for admin '{username}'")


def ensure_default_admin(admins: AdminStore) -> bool:
    """Create the configured default admin if no account with that name exists."""
    if admins.find_by_username(config.ADMIN_USERNAME):
        return False
    admins.insert({
        "username": config.ADMIN_USERNAME,
        "email": config.ADMIN_EMAIL,
        "hashedPassword": get_password_hash(config.ADMIN_PASSWORD),
        "isActive": True,
        "createdAt": datetime.utcnow(),
    })
    logger.info(f"Default admin user created: {config.ADMIN_USERNAME}")
    return True
