"""Business day lookup for reports and kitchen views."""

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, HTTPException, Query

from order_sync.core.config import settings
from order_sync.core.exceptions import ValidationError
from order_sync.schemas.api import BusinessDayResponse
from order_sync.services.business_day import business_date, business_day_range

router = APIRouter()


@router.get("", response_model=BusinessDayResponse)
def get_business_day(
    date: Optional[str] = Query(None, description="Business date YYYY-MM-DD"),
    timestamp: Optional[str] = Query(None, description="ISO timestamp to resolve"),
):
    """Business date and its [start, end) range; defaults to the current business day."""
    config = settings.business_day_config
    tz = ZoneInfo(settings.timezone) if settings.timezone else None
    try:
        if date is None:
            date = business_date(timestamp or datetime.now(tz), config, tz)
        start, end = business_day_range(date, config, tz=tz)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return BusinessDayResponse(business_date=date, start=start, end=end)
