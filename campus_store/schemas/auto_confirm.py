from pydantic import BaseModel

from campus_store.schemas.checkout import EffectOut


class AutoConfirmRunOut(BaseModel):
    found: int
    confirmed: int
    confirmedOrders: list[str] = []
    failed: list[dict] = []
    failedEffects: list[EffectOut] = []


class AutoConfirmStatsOut(BaseModel):
    totalClaimed: int
    readyNow: int
    readyTomorrow: int
    readyInTwoDays: int
    graceDays: int
    schedulerRunning: bool = False
    lastRunAt: str | None = None
