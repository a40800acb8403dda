# app/schemas/common.py
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel

T = TypeVar("T")

# Stored localized values: plain string or a language map
LocalizedValue = Union[str, Dict[str, str]]


class APIResponse(BaseModel, Generic[T]):
    """Envelope returned by every endpoint."""

    success: bool = True
    message: str = ""
    data: Optional[T] = None


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    error: str
    errors: List[str] = []


class Pagination(BaseModel):
    total: int
    page: int
    size: int
    total_pages: int


def ok(data: Any = None, message: str = "OK") -> Dict[str, Any]:
    return {"success": True, "message": message, "data": data}
