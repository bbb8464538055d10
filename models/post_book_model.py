from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum

class BookCondition(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"

class BookStatus(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"

class PostBookModel(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    author: str = Field(..., min_length=1, max_length=200)
    condition: BookCondition
    description: Optional[str] = Field(None, max_length=2000)

    class Config:
        str_strip_whitespace = True
