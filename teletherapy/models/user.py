"""User model definitions."""

from sqlalchemy import Column, Integer, String
from teletherapy.database import Base


class User(Base):
    """Represents a teen account that books sessions."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    name = Column(String)
    avatar = Column(String, nullable=True)
    role = Column(String, default="teen")
