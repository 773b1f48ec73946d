from dataclasses import dataclass, asdict
from typing import Optional

STATUS_COMPLETED = "completed"

@dataclass
class Generation:
    id: Optional[str]
    user_id: str
    prompt: str
    input_video_url: str
    input_image_url: str
    output_video_url: str
    status: str = STATUS_COMPLETED
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row.get("id"),
            user_id=row["user_id"],
            prompt=row.get("prompt") or "",
            input_video_url=row.get("input_video_url"),
            input_image_url=row.get("input_image_url"),
            output_video_url=row.get("output_video_url"),
            status=row.get("status") or STATUS_COMPLETED,
            created_at=row.get("created_at"),
        )

    def to_row(self):
        row = asdict(self)
        row.pop("id")
        row.pop("created_at")
        return row

    def to_dict(self):
        return asdict(self)

    def __repr__(self):
        return f"<Generation {self.id} - {self.status}>"
