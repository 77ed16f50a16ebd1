"""
Service settings read from the environment.

Notebook-level behaviour is configured through notebook metadata (see
``jupytutor.domain.models.config``); these settings only cover the process.
"""

from typing import Optional
import os
from pydantic import BaseModel, Field


class ServiceSettings(BaseModel):
    """Process-wide settings for the jupytutor service"""
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json or console")
    service_name: str = Field(default="jupytutor")
    request_timeout: float = Field(default=15.0, description="Per-page HTTP timeout in seconds")
    soft_timeout: float = Field(default=5.0, description="Soft deadline for context readers in seconds")
    user_agent: str = Field(default="jupytutor/0.1")
    max_concurrency: Optional[int] = Field(default=None, description="Cap on concurrent page fetches; unset means unbounded")

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        """Build settings from JUPYTUTOR_* environment variables"""
        
        values = {}
        for field_name in cls.model_fields:
            raw = os.getenv(f"JUPYTUTOR_{field_name.upper()}")
            if raw not in (None, ""):
                values[field_name] = raw
        return cls.model_validate(values)
