"""
Rating Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class RatingSubmit(BaseModel):
    score: int = Field(..., ge=1, le=5, description="1 (worst) to 5 (best)")
    review: Optional[str] = Field(None, max_length=2000)


class RatingResponse(BaseModel):
    id: int
    shipment_id: int
    load_id: int
    shipper_id: int
    score: int
    review: Optional[str]

    class Config:
        from_attributes = True


class RatingObligationResponse(BaseModel):
    """Open obligation; ``prompt_ready`` is false while the shipper is unresolved."""
    shipment_id: int
    load_id: int
    counterparty_id: Optional[int]
    armed_at: datetime
    prompt_ready: bool

    class Config:
        from_attributes = True
