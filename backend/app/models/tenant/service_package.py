"""ServicePackage — an internet subscription plan sold to clients.

Pricing models:
  flat        → price_monthly per client
  per_device  → price_per_device × device_count
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import TenantBase


class ServicePackage(TenantBase):
    __tablename__ = "service_packages"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # flat | per_device
    pricing_model: Mapped[str] = mapped_column(String(20), default="flat")
    price_monthly: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    price_per_device: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), default="IDR")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
