from pydantic import BaseModel, Field, field_validator
from bson import ObjectId
from enum import Enum

class ExchangeStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"

class DecisionStatus(str, Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"

class ExchangeRequest(BaseModel):
    book_id: str
    message: str = Field(..., min_length=1, max_length=1000)

    class Config:
        str_strip_whitespace = True

    @field_validator("book_id")
    @classmethod
    def check_book_id(cls, value: str) -> str:
        if not ObjectId.is_valid(value):
            raise ValueError("Valid book ID is required")
        return value

class ExchangeResponse(BaseModel):
    status: DecisionStatus
