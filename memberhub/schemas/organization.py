from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

MembershipStatus = Literal["pending", "approved", "inactive"]


class OrganizationCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=2, max_length=255)
    membership_status: MembershipStatus = "approved"
    contact_person_id: Optional[int] = Field(default=None, ge=1)


class OrganizationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    membership_status: str
    contact_person_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
