from datetime import datetime
from fastapi import APIRouter, Depends

from tourbook.api.deps import get_rate_cache
from tourbook.schemas.currency import CacheStatusOut, QuoteOut, RefreshOut
from tourbook.services.currency_service import ExchangeRateCache, ExchangeRateQuote, materially_changed

router = APIRouter(tags=["currency"])


def quote_out(q: ExchangeRateQuote, now: datetime) -> QuoteOut:
    return QuoteOut(
        base=q.base,
        target=q.target,
        rate=float(q.rate),
        source=q.source.value,
        fetchedAt=q.fetched_at.isoformat(),
        expiresAt=q.expires_at.isoformat(),
        stale=q.is_stale(now),
    )


@router.get("/public/fx/quote", response_model=QuoteOut)
def get_quote(rates: ExchangeRateCache = Depends(get_rate_cache)):
    """Synchronous quote for rendering: cached live rate if fresh, otherwise the fallback table."""
    return quote_out(rates.get_cached_quote(), rates.clock())


@router.post("/public/fx/refresh", response_model=RefreshOut)
async def refresh_quote(rates: ExchangeRateCache = Depends(get_rate_cache)):
    before = rates.get_cached_quote()
    after = await rates.refresh_quote()
    return RefreshOut(quote=quote_out(after, rates.clock()), changed=materially_changed(before, after))


@router.get("/public/fx/status", response_model=CacheStatusOut)
def get_status(rates: ExchangeRateCache = Depends(get_rate_cache)):
    return CacheStatusOut(**rates.status())
