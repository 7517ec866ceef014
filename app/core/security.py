import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import auth as firebase_auth
from jose import JWTError, jwt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import Unauthenticated, Unauthorized
from app.core.firebase import get_firebase_app
from app.db import models
from app.db.session import get_db

logger = logging.getLogger("compia.auth")

bearer_scheme = HTTPBearer(auto_error=False)

LAST_ACTIVE_REFRESH = timedelta(minutes=5)


@dataclass(frozen=True)
class Principal:
    subject_id: str
    email: Optional[str]
    name: Optional[str] = None


def create_access_token(
    subject_id: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
    extra_claims: Optional[dict[str, Any]] = None,
) -> str:
    to_encode: dict[str, Any] = {"sub": subject_id}
    if email:
        to_encode["email"] = email
    if name:
        to_encode["user_metadata"] = {"name": name}
    if settings.JWT_AUDIENCE:
        to_encode["aud"] = settings.JWT_AUDIENCE
    if extra_claims:
        to_encode.update(extra_claims)
    expire = datetime.utcnow() + (expires_delta or timedelta(hours=settings.ACCESS_TOKEN_EXPIRE_HOURS))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def _principal_from_jwt(token: str) -> Principal:
    options = {"verify_aud": bool(settings.JWT_AUDIENCE)}
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            options=options,
        )
    except JWTError:
        raise Unauthenticated("Credenciais invalidas")
    subject_id = payload.get("sub")
    if not subject_id:
        raise Unauthenticated("Credenciais invalidas")
    metadata = payload.get("user_metadata") or {}
    name = metadata.get("name") or metadata.get("full_name") or payload.get("name")
    return Principal(subject_id=str(subject_id), email=payload.get("email"), name=name)


def _principal_from_firebase(token: str) -> Principal:
    try:
        decoded = firebase_auth.verify_id_token(token, app=get_firebase_app())
    except (ValueError, firebase_auth.InvalidIdTokenError, firebase_auth.ExpiredIdTokenError):
        raise Unauthenticated("Credenciais invalidas")
    return Principal(subject_id=decoded["uid"], email=decoded.get("email"), name=decoded.get("name"))


def verify_token(token: str) -> Principal:
    if settings.AUTH_PROVIDER == "firebase":
        return _principal_from_firebase(token)
    return _principal_from_jwt(token)


class IdentityResolver:
    """
    Enriquece o principal autenticado com o registro persistido do usuario.
    Papel e organizacao vem sempre do banco, nunca das claims do token.
    """

    def __init__(self, db: Session, auto_provision: Optional[bool] = None):
        self.db = db
        self.auto_provision = settings.AUTO_PROVISION_USERS if auto_provision is None else auto_provision

    def lookup(self, principal: Principal) -> Optional[models.User]:
        user = self.db.query(models.User).filter(models.User.id == principal.subject_id).first()
        if user or not principal.email:
            return user
        return (
            self.db.query(models.User)
            .filter(models.User.email == principal.email.strip().lower())
            .first()
        )

    def _provision(self, principal: Principal) -> models.User:
        if not principal.email:
            raise Unauthenticated("Credenciais sem e-mail")
        user = models.User(
            id=principal.subject_id,
            email=principal.email.strip().lower(),
            name=principal.name or principal.email.split("@")[0],
            role="pending",
            approval_status="pending",
            is_active=True,
            last_active_at=datetime.utcnow(),
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            # Outro request provisionou o mesmo usuario primeiro.
            self.db.rollback()
            existing = self.lookup(principal)
            if not existing:
                raise
            return existing
        self.db.refresh(user)
        logger.info("usuario provisionado no primeiro login user_id=%s", user.id)
        return user

    def _touch(self, user: models.User) -> None:
        now = datetime.utcnow()
        if user.last_active_at and now - user.last_active_at < LAST_ACTIVE_REFRESH:
            return
        user.last_active_at = now
        self.db.commit()

    def resolve(self, principal: Principal) -> models.User:
        user = self.lookup(principal)
        if not user:
            if not self.auto_provision:
                logger.warning("principal sem usuario cadastrado subject=%s", principal.subject_id)
                raise Unauthenticated("Usuario nao cadastrado")
            user = self._provision(principal)
        if not user.is_active:
            raise Unauthorized("Usuario inativo")
        self._touch(user)
        return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> models.User:
    if credentials is None or not credentials.credentials:
        raise Unauthenticated()
    principal = verify_token(credentials.credentials)
    return IdentityResolver(db).resolve(principal)
