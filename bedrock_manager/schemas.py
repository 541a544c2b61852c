# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2026 The Bedrock Manager Authors

"""
Bedrock Manager Pydantic Schemas

Result type shared by the update pipeline and the pack installer, plus
the request/response bodies of the HTTP API.
"""

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, ConfigDict, field_validator


# =============================================================================
# RESULTS
# =============================================================================

class OperationResult(BaseModel):
    """Outcome of an update or pack upload. The only thing callers see."""
    success: bool = Field(..., description="Whether the operation completed")
    message: str = Field(..., description="Human-readable outcome")

    @classmethod
    def ok(cls, message: str) -> "OperationResult":
        return cls(success=True, message=message)

    @classmethod
    def fail(cls, message: str) -> "OperationResult":
        return cls(success=False, message=message)


# =============================================================================
# REQUEST MODELS
# =============================================================================

class ActivateWorldRequest(BaseModel):
    """Body of POST /api/activate-world."""
    world_name: str = Field(..., alias="worldName", description="World directory name")

    model_config = ConfigDict(populate_by_name=True)


class SettingsUpdateRequest(BaseModel):
    """Body of POST /api/config. Only these settings are editable at runtime."""
    auto_update_enabled: Optional[bool] = Field(default=None, alias="autoUpdateEnabled")
    auto_update_interval_minutes: Optional[int] = Field(default=None, ge=0, alias="autoUpdateIntervalMinutes")
    log_level: Optional[str] = Field(default=None, alias="logLevel")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("log_level")
    @classmethod
    def _upper(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value


PropertyValue = Union[str, int, float, bool]


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class StatusResponse(BaseModel):
    status: str = Field(..., description="running or stopped")


class PropertiesResponse(BaseModel):
    success: bool = True
    properties: Dict[str, str] = Field(default_factory=dict)


class WorldsResponse(BaseModel):
    success: bool = True
    worlds: List[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    installed_version: Optional[str] = Field(default=None, alias="installedVersion")
    server_running: bool = Field(default=False, alias="serverRunning")
    update_in_progress: bool = Field(default=False, alias="updateInProgress")

    model_config = ConfigDict(populate_by_name=True)

