from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any, List

class CollectPayload(BaseModel):
    """
    Body of POST /api/collect and of unload beacons.
    Every section is optional; unknown top-level keys are accepted and ignored.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    session_id: Optional[str] = Field(None, alias="sessionId", description="Client-side session id")

    screen: Optional[Dict[str, Any]] = None
    browser: Optional[Dict[str, Any]] = Field(None, description="navigator properties reported by the client")
    timezone: Optional[Dict[str, Any]] = None
    locale: Optional[Dict[str, Any]] = None
    performance: Optional[Dict[str, Any]] = None
    network: Optional[Dict[str, Any]] = None
    storage: Optional[Dict[str, Any]] = None
    fingerprint: Optional[Dict[str, Any]] = None

    # Optional browser APIs, null when unsupported
    web_rtc: Optional[Any] = Field(None, alias="webRTC")
    battery: Optional[Any] = None
    media_devices: Optional[Any] = Field(None, alias="mediaDevices")

    # Opaque pass-through, no schema
    client_data: Optional[Any] = Field(None, alias="clientData")

class CollectResponse(BaseModel):
    success: bool = True
    message: str = "Data collected successfully"
    sessionId: str
    timestamp: str
    ip: str
    isLocalhost: bool

class LogsResponse(BaseModel):
    success: bool = True
    stats: Dict[str, Any]
    total: int
    logs: List[Dict[str, Any]]

class StatsResponse(BaseModel):
    success: bool = True
    hourlyData: Dict[str, int]
    total: int
    uniqueVisitors: int
