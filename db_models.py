from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, StrictInt, field_validator

PRIMARY = "primary"
SECONDARY = "secondary"


class ContactRecord(BaseModel):
    id: int
    email: Optional[str] = None
    phoneNumber: Optional[str] = None
    linkedId: Optional[int] = None
    linkPrecedence: Literal["primary", "secondary"]
    createdAt: datetime
    updatedAt: Optional[datetime] = None

    @property
    def is_primary(self) -> bool:
        return self.linkPrecedence == PRIMARY

    @property
    def root_id(self) -> Optional[int]:
        """Id of the primary this record resolves to."""
        return self.id if self.is_primary else self.linkedId


class IdentifyRequest(BaseModel):
    email: Optional[str] = None
    phoneNumber: Optional[Union[str, StrictInt]] = None

    @field_validator("email", "phoneNumber", mode="after")
    @classmethod
    def blank_to_none(cls, value):
        # clients send phone numbers as JSON numbers too
        if isinstance(value, int):
            value = str(value)
        if value == "":
            return None
        return value


class ContactResponse(BaseModel):
    primaryContactId: int
    emails: List[str]
    phoneNumbers: List[str]
    secondaryContactIds: List[int]


class FinalResponse(BaseModel):
    contact: ContactResponse
