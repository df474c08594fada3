from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SystemStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"


class ExternalSystemDescriptor(BaseModel):
    """
    Identity and credentials of one registered log source.
    """
    id: int
    name: str
    system_type: str = "Medical Device"
    url: str
    api_key: str
    status: SystemStatus = SystemStatus.ACTIVE
    last_sync: Optional[datetime] = None

    class Config:
        from_attributes = True


class ExternalSystemCreate(BaseModel):
    name: str = Field(min_length=1)
    system_type: str = "Medical Device"
    description: Optional[str] = None
    url: str = Field(min_length=1)
    api_key: str = Field(min_length=1)
    status: SystemStatus = SystemStatus.ACTIVE
    validate_connection: bool = False


class ExternalSystemResponse(BaseModel):
    id: int
    name: str
    system_type: str
    description: Optional[str]
    url: str
    status: SystemStatus
    last_sync: Optional[datetime]
    last_error: Optional[str]

    class Config:
        from_attributes = True


class ConnectionTestRequest(BaseModel):
    url: str = Field(min_length=1)
    api_key: str = Field(min_length=1)


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    error_kind: Optional[str] = None
