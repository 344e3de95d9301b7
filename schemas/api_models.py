"""
Shared response envelopes for API v1
"""

from pydantic import BaseModel
from typing import List, Optional, Union


# ============================================================================
# ERROR MODELS
# ============================================================================

class ErrorDetail(BaseModel):
    field: Optional[str] = None
    message: str
    code: Optional[str] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    detail: Optional[Union[str, List[ErrorDetail]]] = None
    status_code: int
    request_id: Optional[str] = None
    correlation_id: Optional[str] = None
