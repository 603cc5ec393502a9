"""
models/user.py — User and UserRole table definitions.

No business logic. No imports from services or routes.

The email address doubles as the login username. `security_stamp` is
embedded in every access token; rotating it (password change) makes all
outstanding access tokens fail verification before their natural expiry.
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db

# Role names. New registrations receive ROLE_USER.
ROLE_USER  = "User"
ROLE_ADMIN = "Admin"


def new_security_stamp() -> str:
    return secrets.token_hex(16)


class User(db.Model):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )

    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name:  Mapped[str | None] = mapped_column(String(255), nullable=True)

    security_stamp: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default=new_security_stamp,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────
    # Read-only navigation. No logic here.

    roles: Mapped[list["UserRole"]] = relationship(
        "UserRole",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    refresh_tokens: Mapped[list["RefreshToken"]] = relationship(  # noqa: F821
        "RefreshToken",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def role_names(self) -> list[str]:
        return sorted(role.role for role in self.roles)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User id={self.id} email={self.email!r}>"


class UserRole(db.Model):
    __tablename__ = "user_roles"

    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    role: Mapped[str] = mapped_column(String(50), nullable=False)

    user: Mapped[User] = relationship("User", back_populates="roles")

    def __repr__(self) -> str:  # pragma: no cover
        return f"<UserRole user_id={self.user_id} role={self.role!r}>"
