from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime

class RegisterUser(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)

    class Config:
        str_strip_whitespace = True

class LoginUser(BaseModel):
    email: EmailStr
    password: str

class UserProfile(BaseModel):
    id: str
    name: str
    email: EmailStr
    created_at: Optional[datetime] = None
