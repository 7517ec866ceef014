import uuid
from datetime import datetime

from sqlalchemy import (
    DDL,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False, default="company")
    description = Column(Text, nullable=True)
    logo_url = Column(String, nullable=True)
    contact_email = Column(String, nullable=True)
    contact_phone = Column(String, nullable=True)
    address = Column(String, nullable=True)
    cnpj = Column(String, nullable=True)
    razao_social = Column(String, nullable=True)
    nome_fantasia = Column(String, nullable=True)
    website = Column(String, nullable=True)
    parent_organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True)
    organization_level = Column(String, nullable=False, default="company")
    subscription_status = Column(String, nullable=False, default="active")
    subscription_plan = Column(String, nullable=False, default="basic")
    max_users = Column(Integer, nullable=False, default=50)
    max_subsidiaries = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    parent = relationship("Organization", remote_side=[id])
    users = relationship("User", back_populates="organization", foreign_keys="User.organization_id")
    inspections = relationship("Inspection", back_populates="organization")


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_user_email"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, nullable=False)
    name = Column(String, nullable=True)
    role = Column(String, nullable=False, default="pending")
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True)
    managed_organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True)
    approval_status = Column(String, nullable=False, default="pending")
    approved_by = Column(String, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejection_reason = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_active_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    organization = relationship("Organization", back_populates="users", foreign_keys=[organization_id])


class Inspection(Base):
    __tablename__ = "inspections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String, nullable=True)
    company_name = Column(String, nullable=True)
    cep = Column(String, nullable=True)
    address = Column(String, nullable=True)
    logradouro = Column(String, nullable=True)
    numero = Column(String, nullable=True)
    complemento = Column(String, nullable=True)
    bairro = Column(String, nullable=True)
    cidade = Column(String, nullable=True)
    uf = Column(String, nullable=True)
    sectors = Column(JSON, nullable=True)
    inspector_name = Column(String, nullable=True)
    inspector_email = Column(String, nullable=True)
    responsible_name = Column(String, nullable=True)
    responsible_email = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pendente")
    priority = Column(String, nullable=False, default="media")
    scheduled_date = Column(Date, nullable=True)
    completed_date = Column(Date, nullable=True)
    action_plan = Column(Text, nullable=True)
    action_plan_type = Column(String, nullable=True)
    inspector_signature = Column(Text, nullable=True)
    responsible_signature = Column(Text, nullable=True)
    reopen_justification = Column(Text, nullable=True)
    reopened_at = Column(DateTime, nullable=True)
    device_fingerprint = Column(String, nullable=True)
    device_model = Column(String, nullable=True)
    location_start_lat = Column(Float, nullable=True)
    location_start_lng = Column(Float, nullable=True)
    location_end_lat = Column(Float, nullable=True)
    location_end_lng = Column(Float, nullable=True)
    started_at_user_time = Column(DateTime, nullable=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True)
    created_by = Column(String, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    organization = relationship("Organization", back_populates="inspections")
    items = relationship("InspectionItem", back_populates="inspection", cascade="all, delete-orphan")
    action_items = relationship("ActionItem", back_populates="inspection", cascade="all, delete-orphan")


class InspectionItem(Base):
    __tablename__ = "inspection_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    inspection_id = Column(Integer, ForeignKey("inspections.id"), nullable=False)
    category = Column(String, nullable=False, default="Geral")
    item_description = Column(String, nullable=False)
    field_type = Column(String, nullable=False, default="boolean")
    field_responses = Column(JSON, nullable=True)
    compliance_status = Column(String, nullable=True)
    ai_pre_analysis = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    inspection = relationship("Inspection", back_populates="items")


class ActionItem(Base):
    __tablename__ = "action_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    inspection_id = Column(Integer, ForeignKey("inspections.id"), nullable=False)
    inspection_item_id = Column(Integer, ForeignKey("inspection_items.id"), nullable=True)
    title = Column(String, nullable=False)
    what_description = Column(Text, nullable=True)
    why_reason = Column(Text, nullable=True)
    where_location = Column(String, nullable=True)
    when_deadline = Column(Date, nullable=True)
    who_responsible = Column(String, nullable=True)
    how_method = Column(Text, nullable=True)
    how_much_cost = Column(String, nullable=True)
    priority = Column(String, nullable=False, default="media")
    status = Column(String, nullable=False, default="pending")
    is_ai_generated = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    inspection = relationship("Inspection", back_populates="action_items")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Sem FK: o historico sobrevive a exclusao da inspecao.
    inspection_id = Column(Integer, nullable=True, index=True)
    organization_id = Column(Integer, nullable=True, index=True)
    user_id = Column(String, nullable=True)
    action = Column(String, nullable=False)
    resource_type = Column(String, nullable=True)
    resource_id = Column(String, nullable=True)
    field_changed = Column(String, nullable=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class SecurityEvent(Base):
    __tablename__ = "security_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=True)
    action_type = Column(String, nullable=False)
    details = Column(JSON, nullable=True)
    blocked = Column(Boolean, nullable=False, default=False)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class RolePermission(Base):
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role", "permission_type", "organization_id", name="uq_role_permission_org"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    role = Column(String, nullable=False)
    permission_type = Column(String, nullable=False)
    is_allowed = Column(Boolean, nullable=False, default=False)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AppendOnlyViolation(RuntimeError):
    pass


@event.listens_for(AuditLog, "before_update")
def _block_audit_update(mapper, connection, target):
    raise AppendOnlyViolation(f"audit_logs e somente-insercao (id={target.id})")


@event.listens_for(AuditLog, "before_delete")
def _block_audit_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"audit_logs e somente-insercao (id={target.id})")


for _operation in ("UPDATE", "DELETE"):
    event.listen(
        AuditLog.__table__,
        "after_create",
        DDL(
            f"CREATE TRIGGER IF NOT EXISTS audit_logs_no_{_operation.lower()} "
            f"BEFORE {_operation} ON audit_logs "
            "BEGIN SELECT RAISE(ABORT, 'audit_logs e somente-insercao'); END;"
        ).execute_if(dialect="sqlite"),
    )
