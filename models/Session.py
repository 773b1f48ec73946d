from dataclasses import dataclass
from typing import Optional

@dataclass
class Session:
    access_token: str
    refresh_token: Optional[str] = None
    user_id: Optional[str] = None
    email: Optional[str] = None
    expires_at: Optional[int] = None

    @classmethod
    def from_response(cls, data):
        user = data.get("user") or {}
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            user_id=user.get("id"),
            email=user.get("email"),
            expires_at=data.get("expires_at"),
        )
