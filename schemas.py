import datetime as dt
from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CategoryIn(BaseModel):
    name: str = Field(..., max_length=100)
    color: Optional[str] = Field(default=None, max_length=9)
    icon: Optional[str] = Field(default=None, max_length=16)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    color: Optional[str] = Field(default=None, max_length=9)
    icon: Optional[str] = Field(default=None, max_length=16)


class ExpenseIn(BaseModel):
    amount: Optional[Decimal] = None
    date: Optional[dt.date] = None
    category_id: Optional[int] = None
    note: Optional[str] = Field(default=None, max_length=500)


class ExpenseUpdate(BaseModel):
    """Partial update; only the fields that were sent are applied."""

    amount: Optional[Decimal] = None
    date: Optional[dt.date] = None
    category_id: Optional[int] = None
    note: Optional[str] = Field(default=None, max_length=500)


class CredentialsIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str = Field(..., max_length=150)
    password: str = Field(..., max_length=200)


class LegacyCategoryRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    user_id: Optional[int] = None
    name: str
    color: Optional[str] = None
    icon: Optional[str] = None
    is_default: bool = False
    created_at: Optional[str] = None


class LegacyExpenseRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    user_id: Optional[int] = None
    amount: Decimal
    date: date
    category_id: int
    note: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
