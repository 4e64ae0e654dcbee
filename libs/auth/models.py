from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class AuthUser(BaseModel):
    """
    Identity resolved from a bearer token.

    Trusted as-is by the services; sellers carry a ``seller_id`` claim.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    seller_id: Optional[str] = None
    role: str = "authenticated"
