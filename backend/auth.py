# auth.py — Token verification & org RBAC for Solis Center
# Features:
# - HS256 JWT bearer tokens issued by the identity provider (sub = user id)
# - Session resolved from the caller's Member document, injected per request
# - 6-tier RBAC (owner, admin, manager, member, guest, readonly)
# - Fine-grained permission scopes

import os
import uuid
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from document_store import DocumentStore, get_document_store
from members import MemberRepository
from models import MemberRole

logger = logging.getLogger("solis-center.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY or SECRET_KEY == "change-this-to-a-secure-random-key-in-production":
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY not set or insecure. Generated ephemeral key. "
        "Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

security = HTTPBearer()


# ============================================================
# ROLE PERMISSIONS
# ============================================================

_MEMBER_SCOPES = [
    "channels:read", "channels:write",
    "members:read",
    "workspace:read", "workspace:write",
    "ai:generate",
]

ROLE_PERMISSIONS = {
    MemberRole.OWNER: _MEMBER_SCOPES + [
        "channels:manage", "members:manage", "teams:manage",
        "automations:manage", "settings:write", "admin:audit",
    ],
    MemberRole.ADMIN: _MEMBER_SCOPES + [
        "channels:manage", "members:manage", "teams:manage",
        "automations:manage", "settings:write", "admin:audit",
    ],
    MemberRole.MANAGER: _MEMBER_SCOPES + ["teams:manage", "automations:manage"],
    MemberRole.MEMBER: list(_MEMBER_SCOPES),
    MemberRole.GUEST: ["channels:read", "channels:write", "members:read", "workspace:read"],
    MemberRole.READONLY: ["channels:read", "members:read", "workspace:read"],
}

ADMIN_ROLES = {MemberRole.OWNER, MemberRole.ADMIN}


# ============================================================
# SESSION
# ============================================================

class TokenIdentity(BaseModel):
    """What the bearer token alone says about the caller"""
    id: str
    email: str = ""
    display_name: str = ""
    photo_url: Optional[str] = None


class CurrentUser(BaseModel):
    id: str
    email: str
    display_name: str
    photo_url: Optional[str] = None
    org_id: str
    role: str
    is_admin: bool
    permissions: List[str] = []

    def has_permission(self, scope: str) -> bool:
        return scope in self.permissions


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Token handling. Sign-in itself happens at the identity provider."""

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
            "iat": now,
            "type": "access",
            "jti": str(uuid.uuid4()),
        })
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid token")
        if payload.get("type", "access") != "access":
            raise HTTPException(status_code=401, detail="Invalid token type")
        if not payload.get("sub"):
            raise HTTPException(status_code=401, detail="Invalid token")
        return payload

    @staticmethod
    def identity_from_payload(payload: Dict[str, Any]) -> TokenIdentity:
        return TokenIdentity(
            id=payload["sub"],
            email=payload.get("email") or "",
            display_name=payload.get("name") or payload.get("display_name") or "",
            photo_url=payload.get("picture"),
        )

    @staticmethod
    def get_role_permissions(role: str) -> List[str]:
        try:
            return list(ROLE_PERMISSIONS[MemberRole(role)])
        except (ValueError, KeyError):
            return list(ROLE_PERMISSIONS[MemberRole.READONLY])

    @staticmethod
    def session_for_member(member: Dict[str, Any], org_id: str) -> CurrentUser:
        role = member.get("role") or MemberRole.MEMBER.value
        try:
            is_admin = MemberRole(role) in ADMIN_ROLES
        except ValueError:
            is_admin = False
        return CurrentUser(
            id=member["id"],
            email=member.get("email") or "",
            display_name=member.get("display_name") or "",
            photo_url=member.get("photo_url"),
            org_id=org_id,
            role=role,
            is_admin=is_admin,
            permissions=AuthService.get_role_permissions(role),
        )


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_token_identity(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> TokenIdentity:
    payload = AuthService.verify_token(credentials.credentials)
    return AuthService.identity_from_payload(payload)


async def get_current_user(
    identity: TokenIdentity = Depends(get_token_identity),
    store: DocumentStore = Depends(get_document_store),
) -> CurrentUser:
    member = await MemberRepository(store).get_member(identity.id)
    if member is None or not member.get("active", True):
        raise HTTPException(status_code=403, detail="Not a member of this organisation")
    return AuthService.session_for_member(member, store.org_id)


def require_role(*roles: MemberRole):
    """Dependency factory: require user to have one of the specified roles"""
    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if MemberRole(user.role) not in roles:
            raise HTTPException(status_code=403, detail="Insufficient role privileges")
        return user
    return _check


def require_permission(*scopes: str):
    """Dependency factory: require user to have specific permission scopes"""
    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        for scope in scopes:
            if scope not in user.permissions:
                raise HTTPException(
                    status_code=403,
                    detail=f"Missing required permission: {scope}",
                )
        return user
    return _check


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
