from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionCookie(Base):
    """One upstream login, kept for audit. Rows are never updated."""
    __tablename__ = "session_cookies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), nullable=False, index=True)
    session_cookies = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class RedemptionCode(Base):
    __tablename__ = "redemption_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(Text, nullable=False)
    name = Column(String(255))
    quota = Column(Integer)
    count = Column(Integer)
    user_ip = Column(String(45))
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Token(Base):
    __tablename__ = "tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    raw_response = Column(Text, nullable=False)  # JSON of the creation response
    token_key = Column(String(255), nullable=False, index=True)
    remain_quota = Column(Integer, nullable=False)
    expired_time = Column(Integer, nullable=False)  # negative means no expiry
    unlimited_quota = Column(Boolean, nullable=False, default=False)
    model_limits_enabled = Column(Boolean, nullable=False, default=False)
    model_limits = Column(Text, nullable=False, default="")
    allow_ips = Column(Text, nullable=False, default="")
    token_group = Column(String(255), nullable=False, default="")
    user_ip = Column(String(45))
    created_at = Column(DateTime, default=utcnow, nullable=False)
