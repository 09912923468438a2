from pydantic import BaseModel, Field
from typing import Optional


class ChildCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, max_length=50)
    age: int = Field(..., ge=1, le=100)


class ChildRead(ChildCreate):
    id: int
    parent_id: int

    class Config:
        from_attributes = True


class ChildDeleteResponse(BaseModel):
    child_id: int
    refunded_bookings: int
