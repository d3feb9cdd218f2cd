"""Token usage accounting and monthly spend limits."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel

from .config import ModelPrice
from .persistence import UsageRecord, WorkflowStore
from .persistence.models import utcnow

logger = logging.getLogger(__name__)


def _bare_model_name(model_name: str) -> str:
    return model_name.split(":", 1)[-1]


class UsageTracker:
    """Records one usage row per model response.

    Recording failures are logged and swallowed so accounting can never break
    a conversation.
    """

    def __init__(
        self,
        store: WorkflowStore,
        user_id: str,
        pricing: Optional[Dict[str, ModelPrice]] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.store = store
        self.user_id = user_id
        self.pricing = pricing or {}
        self.session_id = session_id

    def price_for(self, model_name: str) -> Optional[ModelPrice]:
        name = _bare_model_name(model_name)
        if name in self.pricing:
            return self.pricing[name]
        # versioned names such as gemini-2.5-flash-001
        matches = [key for key in self.pricing if name.startswith(key)]
        if matches:
            return self.pricing[max(matches, key=len)]
        return None

    def estimate_cost(self, model_name: str, input_tokens: int, output_tokens: int) -> float:
        price = self.price_for(model_name)
        if price is None:
            logger.debug(f"No pricing configured for {model_name}")
            return 0.0
        return (input_tokens * price.input + output_tokens * price.output) / 1_000_000

    async def record(
        self, model_name: str, input_tokens: int, output_tokens: int
    ) -> Optional[UsageRecord]:
        try:
            record = UsageRecord(
                user_id=self.user_id,
                session_id=self.session_id,
                model=_bare_model_name(model_name),
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cost=self.estimate_cost(model_name, input_tokens, output_tokens),
            )
            await self.store.record_usage(record)
            return record
        except Exception as exc:
            logger.warning(f"Failed to record usage for {self.user_id}: {exc}")
            return None


class SpendCheck(BaseModel):
    allowed: bool
    spent: float
    limit: Optional[float] = None
    remaining: Optional[float] = None


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


async def check_user_can_spend(
    store: WorkflowStore,
    user_id: str,
    monthly_limit: Optional[float],
    now: Optional[datetime] = None,
) -> SpendCheck:
    """Compare the user's month-to-date spend with ``monthly_limit``.

    ``None`` means unlimited.
    """
    now = now or utcnow()
    records = await store.usage_since(user_id, month_start(now))
    spent = round(sum(r.cost for r in records), 6)
    if monthly_limit is None:
        return SpendCheck(allowed=True, spent=spent)
    remaining = max(monthly_limit - spent, 0.0)
    return SpendCheck(
        allowed=spent < monthly_limit,
        spent=spent,
        limit=monthly_limit,
        remaining=remaining,
    )
