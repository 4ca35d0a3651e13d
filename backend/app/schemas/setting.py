from typing import Any

from pydantic import BaseModel, Field


class SettingsUpdate(BaseModel):
    # key -> bare value or {"value": ..., "type": ...}
    settings: dict[str, Any] = Field(..., min_length=1)
