from datetime import datetime

from pydantic import BaseModel, Field, model_validator


# --- Health Models ---


class HealthMetrics(BaseModel):
    total_requests: int = Field(..., ge=0)
    failed_requests: int = Field(..., ge=0)
    average_response_time_ms: float = Field(default=0.0, ge=0.0)

    @model_validator(mode="after")
    def validate_failed_within_total(self):
        if self.failed_requests > self.total_requests:
            raise ValueError(
                f"failed_requests ({self.failed_requests}) exceeds total_requests ({self.total_requests})"
            )
        return self


class HealthSnapshot(BaseModel):
    connected: bool
    last_checked_at: datetime
    response_time_ms: float | None = None
    consecutive_failures: int = Field(default=0, ge=0)
    in_grace_period: bool = False
    grace_period_remaining_ms: float = Field(default=0.0, ge=0.0)
    metrics: HealthMetrics | None = None


# --- Monitor Requests ---


class MonitorRequest(BaseModel):
    endpoint: str = Field(..., min_length=1, max_length=2048)
    is_new: bool = False
    deferred: bool = False


class EndpointHealthResponse(BaseModel):
    endpoint: str
    paused: bool
    health: HealthSnapshot | None = None
