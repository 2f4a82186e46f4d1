"""Data models for the CMS API."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, model_validator


class ErrorResponse(BaseModel):
    """Error body returned by every failing endpoint."""
    error: str = Field(..., description="Provider or store error message")


class MessageResponse(BaseModel):
    message: str


class SignupRequest(BaseModel):
    """Account creation data."""
    email: str = Field(..., min_length=3, description="Login email")
    password: str = Field(..., min_length=1, description="Initial password")
    full_name: Optional[str] = Field(None, description="Display name")
    avatar_url: Optional[str] = Field(None, description="Profile picture URL")

    class Config:
        json_schema_extra = {
            "example": {
                "email": "a@b.com",
                "password": "secret123"
            }
        }


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class GenerateCodeRequest(BaseModel):
    """Pairing code request."""
    device_name: Optional[str] = Field(None, description="Human readable device name")

    class Config:
        json_schema_extra = {
            "example": {
                "device_name": "Lobby TV"
            }
        }


class ConfirmDeviceRequest(BaseModel):
    """Device activation request, keyed by device id, pairing code or both."""
    device_id: Optional[str] = Field(None, description="Store-assigned device id")
    unique_code: Optional[str] = Field(None, description="Pairing code shown for the device")

    @model_validator(mode="after")
    def require_device_reference(self):
        if not self.device_id and not self.unique_code:
            raise ValueError("device_id or unique_code is required")
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "device_id": "9b2f4c1e-6c0a-4d8e-9a55-2f7c2e1d0b3a",
                "unique_code": "1A2B3C4D"
            }
        }


class DeviceResponse(BaseModel):
    """A paired or pending display device."""
    device_id: str
    owner_id: str
    device_name: str
    unique_code: str
    status: str = Field(..., description="pending or active")
    created_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None


class ContentCreate(BaseModel):
    """Content metadata; the file itself is stored elsewhere."""
    file_url: str = Field(..., description="Where the file can be fetched")
    content_type: Optional[str] = Field(None, description="MIME type, e.g. image/png")


class ContentResponse(BaseModel):
    content_id: str
    owner_id: str
    file_url: str
    content_type: Optional[str] = None
    created_at: Optional[datetime] = None


class ProfileUpdateRequest(BaseModel):
    """Fields left out keep their current value."""
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None


class ProfileResponse(BaseModel):
    id: str
    email: Optional[str] = None
    full_name: str = ""
    avatar_url: str = ""


class PlaylistCreate(BaseModel):
    """Schedule a content item on a device."""
    device_id: str
    content_id: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    order: Optional[int] = Field(None, description="Position within the device's playlist")


class PlaylistResponse(BaseModel):
    playlist_id: str
    device_id: str
    content_id: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    order: Optional[int] = None
    created_at: Optional[datetime] = None
