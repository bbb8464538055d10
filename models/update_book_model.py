from pydantic import BaseModel, Field
from typing import Optional
from models.post_book_model import BookCondition

class UpdateBookModel(BaseModel):
    # owner and status are not editable
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    author: Optional[str] = Field(None, min_length=1, max_length=200)
    condition: Optional[BookCondition] = None
    description: Optional[str] = Field(None, max_length=2000)

    class Config:
        str_strip_whitespace = True
