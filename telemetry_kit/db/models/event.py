import uuid

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, JSON, String, Uuid, func

from telemetry_kit.db.models.base import BaseORM


class StoredEvent(BaseORM):
    __tablename__ = "events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid, unique=True, nullable=False)
    org_id = Column(String, nullable=False)
    app_id = Column(String, nullable=False)
    schema_version = Column(String, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)

    service_name = Column(String, nullable=False)
    service_version = Column(String, nullable=False)
    service_language = Column(String, nullable=False)
    service_language_version = Column(String)

    user_id = Column(String, nullable=False)
    session_id = Column(String)

    os = Column(String, nullable=False)
    os_version = Column(String)
    arch = Column(String)
    ci = Column(Boolean)
    shell = Column(String)

    event_type = Column(String, nullable=False)
    event_category = Column(String)
    event_data = Column(JSON, nullable=False)

    sdk_version = Column(String, nullable=False)
    transmission_timestamp = Column(DateTime(timezone=True), nullable=False)
    batch_size = Column(Integer, nullable=False)
    retry_count = Column(Integer, nullable=False, default=0)

    received_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_events_org_app_time", "org_id", "app_id", "timestamp"),
        Index("idx_events_type", "event_type"),
    )
