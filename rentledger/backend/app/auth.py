# backend/app/auth.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import jwt  # PyJWT
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .models import AppUser, Organization, OrgMembership


@dataclass(frozen=True)
class Principal:
    org_id: int
    org_slug: str
    user_id: int
    email: str
    role: str  # owner | operator | viewer


ROLE_ORDER = {"viewer": 1, "operator": 2, "owner": 3}


def _require_role(principal: Principal, min_role: str) -> None:
    if ROLE_ORDER.get(principal.role, 0) < ROLE_ORDER.get(min_role, 999):
        raise HTTPException(status_code=403, detail=f"Requires role >= {min_role}")


# -------------------------
# JWT (tokens are issued by the external auth provider)
# -------------------------
def _decode_token(token: str) -> dict[str, Any]:
    try:
        return dict(jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]))
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


# -------------------------
# Org + membership helpers
# -------------------------
def _get_user_by_email(db: Session, email: str) -> AppUser | None:
    return db.scalar(select(AppUser).where(AppUser.email == email))


def _get_membership(db: Session, org_id: int, user_id: int) -> OrgMembership | None:
    return db.scalar(select(OrgMembership).where(OrgMembership.org_id == org_id, OrgMembership.user_id == user_id))


def _ensure_user(db: Session, email: str) -> AppUser:
    user = _get_user_by_email(db, email=email)
    if user is None:
        user = AppUser(email=email, display_name=email.split("@")[0], created_at=datetime.utcnow())
        db.add(user)
        db.commit()
        db.refresh(user)
    return user


def _principal_from_token(db: Session, token: str) -> Principal:
    claims = _decode_token(token)
    email = str(claims.get("sub") or "").strip().lower()
    if not email:
        raise HTTPException(status_code=401, detail="Token missing sub")

    try:
        org_id = int(claims.get("org_id"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Token missing org_id")

    org = db.get(Organization, org_id)
    if org is None:
        raise HTTPException(status_code=401, detail="Unknown org")

    user = _ensure_user(db, email)
    mem = _get_membership(db, org_id=int(org.id), user_id=int(user.id))
    role = str(mem.role) if mem is not None else str(claims.get("role") or "viewer").lower()
    if role not in ROLE_ORDER:
        raise HTTPException(status_code=403, detail="Not a member of this org")

    return Principal(org_id=int(org.id), org_slug=str(org.slug), user_id=int(user.id), email=email, role=role)


def _principal_from_dev_headers(db: Session, request: Request, org_slug: str) -> Principal:
    email = (request.headers.get(settings.dev_header_user_email) or "").strip().lower()
    role_hint = (request.headers.get(settings.dev_header_user_role) or "owner").strip().lower()
    if not org_slug:
        raise HTTPException(status_code=401, detail=f"Missing {settings.dev_header_org_slug} (active org context).")
    if not email:
        raise HTTPException(status_code=401, detail=f"Missing {settings.dev_header_user_email} for dev auth")

    org = db.scalar(select(Organization).where(Organization.slug == org_slug))
    if org is None and settings.dev_auto_provision:
        org = Organization(slug=org_slug, name=org_slug, created_at=datetime.utcnow())
        db.add(org)
        db.commit()
        db.refresh(org)

    user = _get_user_by_email(db, email=email)
    if user is None and settings.dev_auto_provision:
        user = _ensure_user(db, email)

    if org is None or user is None:
        raise HTTPException(status_code=401, detail="Dev auth could not provision user/org")

    mem = _get_membership(db, org_id=int(org.id), user_id=int(user.id))
    if mem is None and settings.dev_auto_provision:
        mem = OrgMembership(
            org_id=int(org.id),
            user_id=int(user.id),
            role=role_hint if role_hint in ROLE_ORDER else "owner",
            created_at=datetime.utcnow(),
        )
        db.add(mem)
        db.commit()
    if mem is None:
        raise HTTPException(status_code=403, detail="Not a member of this org")

    return Principal(org_id=int(org.id), org_slug=str(org.slug), user_id=int(user.id), email=str(user.email), role=str(mem.role))


def get_principal(
    request: Request,
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> Principal:
    """
    Auth modes:
      jwt: Authorization: Bearer <token> with claims sub (email), org_id, role
      dev: trusted X-Org-Slug / X-User-Email / X-User-Role headers (never in prod)
    """
    mode = (settings.auth_mode or "dev").strip().lower()

    if authorization and str(authorization).lower().startswith("bearer "):
        return _principal_from_token(db, str(authorization).split(" ", 1)[1].strip())

    if mode == "dev":
        org_slug = (request.headers.get(settings.dev_header_org_slug) or "").strip()
        return _principal_from_dev_headers(db, request, org_slug)

    raise HTTPException(status_code=401, detail="Not authenticated")


def require_operator(p: Principal = Depends(get_principal)) -> Principal:
    _require_role(p, "operator")
    return p
