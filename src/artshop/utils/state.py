from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from artshop.db.models import Session
from artshop.utils.security import is_admin


@dataclass
class GlobalState:
    """
    Centralized application state shared by screens.

    Fields:
      - session: the signed-in user (id, email, name), None before login
    """

    session: Optional[Session] = None

    @property
    def signed_in(self) -> bool:
        return self.session is not None

    @property
    def is_admin(self) -> bool:
        return is_admin(self.session)

    @property
    def user_id(self) -> Optional[int]:
        return self.session.id if self.session else None

    @property
    def display_name(self) -> str:
        if self.session is None:
            return ""
        return self.session.name or self.session.email

    def sign_in(self, session: Session) -> None:
        self.session = session

    def sign_out(self) -> None:
        self.session = None
