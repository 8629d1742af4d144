from pydantic import BaseModel
from typing import Optional, Any, Literal

class SuccessResponse(BaseModel):
    """
    Standard success envelope.
    """
    status: Literal["success"] = "success"
    message: str
    data: Optional[Any] = None

class ErrorResponse(BaseModel):
    """
    Standard error response structure.
    """
    status: Literal["error"] = "error"
    message: str
    code: str
    details: Optional[Any] = None
