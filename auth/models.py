"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; stores and routes do the work.

Layer rule: no imports from api/, web/, tours/, or payments/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

# Shape check shared by signup, admin updates and self-service updates.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class Role(str, Enum):
    USER = "user"
    GUIDE = "guide"
    LEAD_GUIDE = "lead-guide"
    ADMIN = "admin"


@dataclass
class User:
    """A registered account (the credential record).

    email is stored stripped and lower-cased; the store normalizes it on every
    write and lookup. password holds the bcrypt hash, never plaintext.

    password_changed_at and password_reset_expires are epoch seconds so they
    compare directly against the JWT iat claim and time.time().
    """

    name: str
    email: str
    role: str = Role.USER.value
    id: int | None = None
    photo: str = "default.jpg"
    password: str | None = None  # bcrypt hash
    password_changed_at: float | None = None
    password_reset_token: str | None = None  # sha256 hex of the raw reset token
    password_reset_expires: float | None = None
    login_attempts: int = 0
    active: bool = True
    created_at: str | None = None

    def changed_password_after(self, issued_at: int | float) -> bool:
        """True when the password changed after a token issued at issued_at."""
        if self.password_changed_at is None:
            return False
        return int(self.password_changed_at) > int(issued_at)
