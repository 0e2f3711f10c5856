from datetime import timedelta
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from config import get_config
from database import now_utc
from errors import Forbidden, Unauthorized
from logger import get_logger

log = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class Principal(BaseModel):
    id: str
    role: str
    email: Optional[str] = None


def create_access_token(subject_id: str, role: str, email: Optional[str] = None) -> str:
    config = get_config()
    payload = {
        "id": subject_id,
        "role": role,
        "email": email,
        "exp": now_utc() + timedelta(minutes=config.jwt_expire_minutes),
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def decode_access_token(token: str) -> Principal:
    config = get_config()
    try:
        payload = jwt.decode(token, config.jwt_secret, algorithms=[config.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired") from None
    except jwt.InvalidTokenError as exc:
        log.debug(f"Rejected token: {exc}")
        raise Unauthorized("Invalid token") from None
    if not payload.get("id") or not payload.get("role"):
        raise Unauthorized("Invalid token")
    return Principal(id=payload["id"], role=payload["role"], email=payload.get("email"))


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    if credentials is None or not credentials.credentials:
        raise Unauthorized("No token, authorization denied")
    return decode_access_token(credentials.credentials)


def require_customer(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != "customer":
        raise Forbidden("Access denied")
    return principal


def require_staff(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role not in get_config().staff_role_list:
        raise Forbidden("Access denied")
    return principal
