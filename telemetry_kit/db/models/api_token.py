import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String, func

from telemetry_kit.db.models.base import BaseORM


class TokenTier(str, enum.Enum):
    FREE = "free"
    PRO = "pro"
    BUSINESS = "business"
    ENTERPRISE = "enterprise"


class ApiToken(BaseORM):
    __tablename__ = "api_tokens"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    app_id = Column(String, nullable=False, index=True)
    token = Column(String, unique=True, index=True, nullable=False)
    secret = Column(String, nullable=False)
    tier = Column(
        Enum(TokenTier, values_callable=lambda tiers: [t.value for t in tiers]),
        nullable=False,
        default=TokenTier.FREE,
    )
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_used_at = Column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"ApiToken(id={self.id}, org_id={self.org_id!r}, app_id={self.app_id!r}, tier={self.tier})"
