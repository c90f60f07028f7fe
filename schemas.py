from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RegisterIn(BaseModel):
    name: str = Field(..., max_length=255)
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=255)


class LoginIn(BaseModel):
    email: str
    password: str


class ProfileIn(BaseModel):
    name: str = Field(..., max_length=255)
    profile_image: Optional[str] = None


class PasswordChangeIn(BaseModel):
    current_password: str
    new_password: str = Field(..., max_length=255)


class CategoryIn(BaseModel):
    name: str = Field(..., max_length=255)
    is_default: Optional[bool] = None


class ExpenseIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., max_length=255)
    description: Optional[str] = None
    amount: Decimal
    expense_date: str = Field(..., alias="date")
    expense_time: str = Field(..., alias="time")
    categories: list[int] = Field(default_factory=list)
