from __future__ import annotations

from dataclasses import dataclass

ADMIN = "admin"
INSTRUCTOR = "instructor"
STUDENT = "student"


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    user_id: subject from the token
    roles: platform roles (admin, instructor, student)
    """

    user_id: str
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles: set[str]) -> bool:
        return bool(self.roles & roles)

    def is_platform_admin(self) -> bool:
        return ADMIN in self.roles
