import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum as SAEnum, ForeignKey, JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import PublicBase


class UserRole(str, enum.Enum):
    ADMINISTRATOR = "administrator"
    FINANCE = "finance"
    COLLECTOR = "collector"


class User(PublicBase):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20), unique=True, index=True)
    role: Mapped[UserRole] = mapped_column(SAEnum(UserRole), default=UserRole.COLLECTOR)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Tenant link
    tenant_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("tenants.id")
    )

    # Granular RBAC: per-user overrides on top of role defaults.
    # JSON dict of {"permission.name": true/false}.
    # null = use role defaults only.
    custom_permissions: Mapped[dict | None] = mapped_column(JSON, default=None)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    tenant = relationship("Tenant", back_populates="users")
