from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from secureauth.database import Base


class SessionEntry(Base):
    __tablename__ = "auth_sessions"

    id = Column(Integer, primary_key=True)
    token = Column(String(128), nullable=False, unique=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    client_ip = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
