"""Scheduled backup job model."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from vod_backup.models.video import Quality


@dataclass
class ScheduledJob:
    """A recurring rule that checks an owner for new archived videos."""

    id: str
    owner_id: str
    owner_name: str
    cron_expression: str
    quality: Quality = Quality.SOURCE
    enabled: bool = True
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "owner_name": self.owner_name,
            "cron_expression": self.cron_expression,
            "quality": self.quality.value,
            "enabled": self.enabled,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScheduledJob":
        last_run = data.get("last_run_at")
        next_run = data.get("next_run_at")
        return cls(
            id=data["id"],
            owner_id=data["owner_id"],
            owner_name=data.get("owner_name", ""),
            cron_expression=data["cron_expression"],
            quality=Quality(data.get("quality", Quality.SOURCE.value)),
            enabled=bool(data.get("enabled", True)),
            last_run_at=datetime.fromisoformat(last_run) if last_run else None,
            next_run_at=datetime.fromisoformat(next_run) if next_run else None,
        )
