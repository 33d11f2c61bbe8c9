from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


# -----------------------------
# Requests
# -----------------------------
class TransferInitiate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    organization_id: int = Field(ge=1)
    new_contact_email: EmailStr


class TransferAccept(BaseModel):
    model_config = ConfigDict(extra="forbid")

    transfer_token: str = Field(min_length=16, max_length=128)


class TransferDecision(BaseModel):
    model_config = ConfigDict(extra="forbid")

    admin_notes: Optional[str] = Field(default=None, max_length=2000)
    # last version the admin saw; a mismatch means someone else acted first
    version: Optional[int] = Field(default=None, ge=1)


# -----------------------------
# Responses
# -----------------------------
class ContactSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class TransferOut(BaseModel):
    """Transfer as shown to clients. The token is never echoed back."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    requested_by: int
    current_contact_id: int
    new_contact_id: Optional[int] = None
    new_contact_email: str
    status: str
    expires_at: datetime
    completed_at: Optional[datetime] = None
    admin_notes: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime


class TransferAdminOut(TransferOut):
    organization_name: Optional[str] = None
    current_contact: Optional[ContactSummary] = None
    new_contact_profile: Optional[ContactSummary] = None


class TransferInitiated(BaseModel):
    success: bool = True
    transfer_id: int
    expires_at: datetime
    message: str


class TransferAccepted(BaseModel):
    success: bool = True
    organization_name: str
    requires_admin_approval: bool = True
    message: str


class TransferActionResult(BaseModel):
    success: bool = True
    message: str
    transfer: TransferOut
    organization_name: Optional[str] = None


class TransferValidation(BaseModel):
    valid: bool
    status: str
    organization_name: Optional[str] = None
    new_contact_email: str
    expires_at: datetime
    has_account: bool
