"""Client — an ISP subscriber visited by field collectors."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.collection.pricing import Discount, discount_from_fields
from app.database import TenantBase


class Client(TenantBase):
    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(100))
    address: Mapped[str | None] = mapped_column(Text)

    # ── Subscription ─────────────────────────────────────────
    service_package_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("service_packages.id")
    )
    device_count: Mapped[int] = mapped_column(Integer, default=1)

    # percent | fixed | null
    discount_type: Mapped[str | None] = mapped_column(String(10))
    discount_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    service_package = relationship("ServicePackage", lazy="selectin")

    @property
    def discount(self) -> Discount | None:
        return discount_from_fields(self.discount_type, self.discount_value)
