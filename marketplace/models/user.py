from typing import Optional
from pydantic import BaseModel
from marketplace.models.booking import Identifier
from marketplace.models.document import SenderType


class User(BaseModel):
    """Authenticated marketplace user"""

    id: Identifier
    email: Optional[str] = None
    role: SenderType = SenderType.TENANT


class Session(BaseModel):
    """Caller credentials, passed explicitly to every API client"""

    access_token: str
    refresh_token: Optional[str] = None

    @property
    def authorization(self) -> str:
        return f"Bearer {self.access_token}"
