# authguard/app/schemas/api_keys.py
"""
Pydantic schemas for API key management.

The plaintext key only ever appears in ApiKeyCreateResponse, once.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ApiKeyCreateRequest(BaseModel):
    key_name: str = Field(..., min_length=1, max_length=100)
    permissions: List[str] = Field(..., min_length=1)
    # None issues a key that never expires
    expires_days: Optional[int] = 365


class ApiKeyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    key_name: str
    key_prefix: str
    permissions: List[str]
    is_active: bool
    created_at: datetime
    expires_at: Optional[datetime]
    last_used_at: Optional[datetime]


class ApiKeyCreateResponse(BaseModel):
    api_key: str
    key: ApiKeyResponse
