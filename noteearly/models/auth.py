from pydantic import BaseModel
from typing import Optional


class TokenData(BaseModel):
    """Claims read from a caller token (tokens are minted by the auth service)."""
    sub: Optional[str] = None
    role: Optional[str] = None


class CurrentUser(BaseModel):
    id: str
    role: str
    admin_id: Optional[str] = None
    is_super_admin: bool = False
