from typing import Optional

from fastapi import Depends, HTTPException, Request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from pydantic import ValidationError
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db
from errors import AuthorizationError
from models import User
from schemas import IdentityClaims
from services import UserService


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.identity_secret, salt="identity-token")


def issue_identity_token(
    external_id: str,
    email: str,
    name: Optional[str] = None,
    image_url: Optional[str] = None,
) -> str:
    """Sign identity claims the way the identity provider does (dev and tests)."""
    claims = {"sub": external_id, "email": email, "name": name, "image_url": image_url}
    return _serializer().dumps(claims)


def verify_identity_token(token: str, max_age_secs: Optional[int] = None) -> IdentityClaims:
    settings = get_settings()
    max_age = max_age_secs or settings.identity_max_age_secs
    try:
        data = _serializer().loads(token, max_age=max_age)
    except SignatureExpired as exc:
        raise AuthorizationError("Identity token expired") from exc
    except BadSignature as exc:
        raise AuthorizationError("Invalid identity token") from exc
    try:
        return IdentityClaims.model_validate(data)
    except ValidationError as exc:
        raise AuthorizationError("Malformed identity claims") from exc


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    token = _bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        claims = verify_identity_token(token)
    except AuthorizationError as exc:
        raise HTTPException(status_code=401, detail="Unauthorized") from exc
    return UserService(db).sync_identity(claims)
