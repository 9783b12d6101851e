"""Account holder; only the columns the webhook pipeline reads."""

from sqlalchemy import Column, String

from src.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    email = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=True)
