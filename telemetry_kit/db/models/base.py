from sqlalchemy import MetaData
from sqlalchemy.orm import declarative_base

from telemetry_kit.core.config import settings

BaseORM = declarative_base(metadata=MetaData(naming_convention=settings.db.naming_convention))
