from dataclasses import dataclass
from typing import Optional

@dataclass
class Profile:
    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row["id"],
            first_name=row.get("first_name"),
            last_name=row.get("last_name"),
            email=row.get("email"),
        )

    @property
    def initial(self):
        return (self.first_name or "U")[:1].upper()

    def __repr__(self):
        return f"<Profile {self.email}>"
