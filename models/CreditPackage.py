from dataclasses import dataclass, field
from typing import List, Optional

@dataclass
class CreditPackage:
    id: int
    name: str
    credits: int
    price: float
    description: Optional[str] = None
    features: List[str] = field(default_factory=list)
    is_popular: bool = False

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row["id"],
            name=row["name"],
            credits=int(row["credits"]),
            price=float(row["price"]),
            description=row.get("description"),
            features=list(row.get("features") or []),
            is_popular=bool(row.get("is_popular")),
        )

    def __repr__(self):
        return f"<CreditPackage {self.name} - {self.credits} credits>"
