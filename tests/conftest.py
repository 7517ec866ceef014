import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.security import create_access_token
from app.db import models
from app.db.session import get_db
from app.main import app
from app.services.role_permissions import ensure_default_role_permissions


@pytest.fixture()
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = SessionLocal()
    ensure_default_role_permissions(db)
    yield db
    db.close()
    engine.dispose()


@pytest.fixture()
def client(db_session):
    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    yield TestClient(app)
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
def make_org(db_session):
    def _make(name="Org", parent=None, org_type="company", is_active=True):
        organization = models.Organization(
            name=name,
            type=org_type,
            parent_organization_id=parent.id if parent is not None else None,
            organization_level="subsidiary" if parent is not None else "company",
            is_active=is_active,
        )
        db_session.add(organization)
        db_session.commit()
        return organization

    return _make


@pytest.fixture()
def make_user(db_session):
    def _make(role="inspector", organization=None, managed=None, email=None, is_active=True, approval="approved"):
        user = models.User(
            id=str(uuid.uuid4()),
            email=email or f"{uuid.uuid4().hex[:8]}@compia.test",
            name=role,
            role=role,
            organization_id=organization.id if organization is not None else None,
            managed_organization_id=managed.id if managed is not None else None,
            approval_status=approval,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture()
def auth_headers():
    def _headers(user, user_agent="pytest-client"):
        token = create_access_token(user.id, email=user.email, name=user.name)
        return {"Authorization": f"Bearer {token}", "User-Agent": user_agent}

    return _headers


@pytest.fixture()
def make_inspection(db_session):
    def _make(organization, creator, title="Inspecao", status="pendente", items=()):
        inspection = models.Inspection(
            title=title,
            organization_id=organization.id if organization is not None else None,
            created_by=creator.id,
            status=status,
        )
        db_session.add(inspection)
        db_session.flush()
        for description, field_type in items:
            db_session.add(
                models.InspectionItem(
                    inspection_id=inspection.id,
                    item_description=description,
                    field_type=field_type,
                )
            )
        db_session.commit()
        return inspection

    return _make
