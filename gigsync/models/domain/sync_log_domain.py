# models/domain/sync_log_domain.py
"""Audit trail of one fetch-and-notify cycle."""

import uuid
from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel, Field

from gigsync.models.domain.enums import DataSyncStepState, DataSyncStepType
from gigsync.models.domain.user_domain import utc_now


class DataSyncStep(BaseModel):
    type: DataSyncStepType
    state: DataSyncStepState
    log_message: str | None = None
    app_id: str | None = None
    app_webhook_url: str | None = None
    created: datetime = Field(default_factory=utc_now)


class DataSyncLog(BaseModel):
    __collection__: ClassVar[str] = "data_sync_logs"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    external_id: uuid.UUID = Field(default_factory=uuid.uuid4)
    user_id: str
    platform_id: str
    created: datetime = Field(default_factory=utc_now)
    steps: list[DataSyncStep] = Field(default_factory=list)

    def append(self, step: DataSyncStep) -> None:
        self.steps.append(step)
