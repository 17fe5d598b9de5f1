"""
Identity for Document Control routes
Bearer tokens are issued by the identity provider; this module only verifies them
"""
from datetime import datetime, timezone, timedelta
import logging

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_postgres_session
from app.document_control.config import document_control_settings
from app.document_control.domain.models import UserSummary
from app.document_control.infrastructure.sqlalchemy_user_directory import SqlAlchemyUserDirectory

logger = logging.getLogger(__name__)

ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24  # 24 hours

# Security
security = HTTPBearer()


def create_access_token(data: dict, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    """Sign a token the way the identity provider does (used by tooling and tests)."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(
        to_encode,
        document_control_settings.jwt_secret_key,
        algorithm=document_control_settings.jwt_algorithm,
    )


def identity_from_token(token: str) -> UserSummary:
    try:
        payload = jwt.decode(
            token,
            document_control_settings.jwt_secret_key,
            algorithms=[document_control_settings.jwt_algorithm],
        )
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid access token")

    user_id = payload.get("sub")
    name = payload.get("name")
    role = payload.get("role")
    if not user_id or not name or not role:
        raise HTTPException(status_code=401, detail="Access token is missing identity claims")
    return UserSummary(id=user_id, name=name, role=role, email=payload.get("email"))


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    session: AsyncSession = Depends(get_postgres_session)
) -> UserSummary:
    """Resolve the caller and keep the user directory in step with the token claims"""
    user = identity_from_token(credentials.credentials)
    await SqlAlchemyUserDirectory(session).register(user)
    return user
