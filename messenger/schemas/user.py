from pydantic import BaseModel
from typing import Optional


class UserProfile(BaseModel):
    id: int
    username: str
    avatar_url: Optional[str] = None
    is_verified: bool = False

    class Config:
        from_attributes = True
