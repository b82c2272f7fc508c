from typing import List, Optional
from pydantic import BaseModel, Field


class SyncStatusResponse(BaseModel):
    entity_type: str
    status: str
    last_sync_started_at: Optional[str] = None
    last_sync_completed_at: Optional[str] = None
    last_successful_sync: Optional[str] = None
    records_synced: int
    records_updated: int
    records_created: int
    errors: List[str] = []
    last_error: Optional[str] = None
    sync_enabled: bool
    sync_interval_minutes: int
    lookback_minutes: int


class SyncStatusUpdate(BaseModel):
    sync_enabled: Optional[bool] = None
    sync_interval_minutes: Optional[int] = Field(None, ge=1, le=1440)
    lookback_minutes: Optional[int] = Field(None, ge=1, le=100000)


class SyncChangeLogResponse(BaseModel):
    id: str
    sync_type: str
    action_type: str
    entity_id: Optional[str] = None
    entity_reference: Optional[str] = None
    entity_name: Optional[str] = None
    change_summary: Optional[str] = None
    change_details: Optional[dict] = None
    sync_source: str
    user_id: Optional[str] = None
    created_at: str


class SyncRunRequest(BaseModel):
    entity_types: Optional[List[str]] = None
    lookback_minutes: Optional[int] = Field(None, ge=1, le=100000)
    sync_source: str = "scheduled_sync"
