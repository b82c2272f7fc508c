from typing import Optional
from pydantic import BaseModel, EmailStr, Field


class UserProfileResponse(BaseModel):
    id: str
    email: str
    full_name: Optional[str] = None
    role: str
    account_status: str
    is_active: bool
    permissions: dict = {}
    created_at: str

    model_config = {"from_attributes": True}


class UserRoleUpdate(BaseModel):
    role: str


class UserProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, max_length=200)
    is_active: Optional[bool] = None
    permissions: Optional[dict] = None


class AccessRequest(BaseModel):
    email: EmailStr
    full_name: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = Field(None, max_length=2000)


class PendingUserResponse(BaseModel):
    id: str
    email: str
    full_name: Optional[str] = None
    status: str
    notes: Optional[str] = None
    requested_at: str
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None


class PendingUserReject(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)


class NewAuthUser(BaseModel):
    """Payload of the auth provider's user-created hook."""

    id: str
    email: EmailStr
    user_metadata: dict = {}
