from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Any


class SimulatedMetricsRequest(BaseModel):
    utilizationPercent: float = Field(..., ge=0)
    sampleCount: int = Field(1, ge=0)
    evaluate: bool = True  # whether to immediately run a scaling cycle


class TargetRegistrationResponse(BaseModel):
    status: str
    target: str
    message: Optional[str] = None


class ScaleStateResponse(BaseModel):
    target_id: str
    phase: str
    running: bool
    initialized: bool
    current_replicas: Optional[int] = None
    desired_replicas: Optional[int] = None
    last_scale_up_time: Optional[float] = None
    last_scale_down_time: Optional[float] = None
    cycle_count: int
    skip_count: int
    policy: Dict[str, Any]


class DecisionResponse(BaseModel):
    timestamp: float
    action: str
    reason: str
    current_replicas: Optional[int] = None
    desired_replicas: Optional[int] = None
    utilization_percent: Optional[float] = None
    sample_count: Optional[int] = None
    error: Optional[str] = None


class HistoryResponse(BaseModel):
    target: str
    decisions: List[DecisionResponse]


class ScalingEventResponse(BaseModel):
    target: str
    direction: str
    from_replicas: int
    to_replicas: int
    reason: str
    timestamp: float


class EventsResponse(BaseModel):
    target: str
    events: List[ScalingEventResponse]
    counts: Dict[str, int]
