from pydantic import BaseModel
from typing import Optional

class QuoteOut(BaseModel):
    base: str
    target: str
    rate: float
    source: str
    fetchedAt: str
    expiresAt: str
    stale: bool

class PriceOut(BaseModel):
    canonicalAmount: int
    canonicalCurrency: str
    billingAmount: int
    billingCurrency: str
    display: str
    note: str
    quote: QuoteOut

class RefreshOut(BaseModel):
    quote: QuoteOut
    changed: bool

class CacheStatusOut(BaseModel):
    cached: bool
    stale: Optional[bool] = None
    expiresIn: Optional[int] = None
    lastUpdated: Optional[str] = None
    fallbackRate: float
    apiEnabled: bool
