import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String

from callsync.core.database import Base
from callsync.core.timeutil import utcnow


class Role(enum.Enum):
    ADMIN = "ADMIN"
    CLIENT = "CLIENT"


class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(150), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(Role), nullable=False, default=Role.CLIENT)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
