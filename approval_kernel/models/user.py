"""
Module: approval_kernel.models.user
Responsibility: Minimal persistence for users who launch workflows.
Architecture position: Kernel > Models.  May import from db/base.py only.

User management itself lives outside the kernel; the orchestrator only
checks that an initiator exists and reads the address, display name and
locale used for initiator notifications.
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import TrackedBase


class UserModel(TrackedBase):
    """A registered user (initiator)."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    locale: Mapped[str] = mapped_column(String(10), nullable=False, default="fr")

    def __repr__(self) -> str:
        return f"<User {self.email}>"
