from dataclasses import dataclass

@dataclass
class Balance:
    user_id: str
    credits: int = 0

    @classmethod
    def from_row(cls, user_id, row):
        if not row:
            return cls(user_id=user_id, credits=0)
        return cls(user_id=user_id, credits=int(row.get("credits") or 0))

    def covers(self, cost):
        return self.credits >= cost
