"""
AuthGate — User SQLAlchemy Model
==================================

What:  ORM model for the `users` table.
Who:   AuthService (register, login, me) and Alembic.

Table Design:
    - Integer primary key: stored in the session as "user_id"
    - username / email: unique at the storage layer; a violation surfaces
      as DuplicateCredentialError
    - password_hash: Argon2id encoded hash (or a legacy SHA-256 hex digest
      until the account next logs in)
"""

from datetime import datetime, timezone

from sqlalchemy import Integer, String, TIMESTAMP, text
from sqlalchemy.orm import Mapped, mapped_column

from authgate.database import Base


class User(Base):
    """A registered account. Never serialized directly: see schemas.auth.UserResponse."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    username: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
    )

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
    )

    # Encoded hash including algorithm, parameters and salt
    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}')>"
