"""Liveness response model."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class LivenessResponse(BaseModel):
    """Process liveness; says nothing about managed instances."""

    status: Literal["ok"] = "ok"
    service: str
    version: str
    timestamp: datetime
