"""
Authenticated caller identity passed from the API layer into services.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Principal:
    user_id: str
    is_admin: bool = False
    email: Optional[str] = None

    def can_access(self, owner_id: Optional[str]) -> bool:
        return self.is_admin or (owner_id is not None and owner_id == self.user_id)
