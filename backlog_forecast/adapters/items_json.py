from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from backlog_forecast.api.schemas import WorkItemIn
from backlog_forecast.forecasting.domain.errors import InvalidInputError
from backlog_forecast.forecasting.domain.models import WorkItem

logger = logging.getLogger(__name__)


class ItemSnapshotFile(BaseModel):
    """On-disk export of already-fetched tracker items.

    Expected JSON format (example):
    {
      "now": "2025-03-31T00:00:00Z",
      "items": [
        {"id": "PROJ-1", "status": "done", "size": 3,
         "created_at": "2025-03-01T09:00:00Z", "completed_at": "2025-03-05T17:00:00Z"},
        {"id": "PROJ-2", "status": "todo", "size": 5, "team": "payments"}
      ]
    }
    """

    now: datetime | None = None
    items: list[WorkItemIn] = Field(default_factory=list)


@dataclass(frozen=True)
class ItemSnapshot:
    items: list[WorkItem]
    now: datetime | None = None


def load_item_snapshot(path: Path) -> ItemSnapshot:
    raw = json.loads(Path(path).expanduser().read_text(encoding="utf-8"))
    if isinstance(raw, list):
        raw = {"items": raw}
    try:
        parsed = ItemSnapshotFile.model_validate(raw)
    except ValidationError as exc:
        raise InvalidInputError(f"Malformed item snapshot {path}: {exc}") from exc
    items = [it.to_domain() for it in parsed.items]
    logger.info("Loaded %d items from %s", len(items), path)
    return ItemSnapshot(items=items, now=parsed.now)
