from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class AuthUser(BaseModel):
    """
    Represents the authenticated caller, decoded from a bearer token.

    Only ``user_id`` matters to the members service: it is written into the
    audit fields (``actor_id``, ``deleted_by``, ``status_changed_by``).
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    role: str = "authenticated"
