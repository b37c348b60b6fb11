import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.money import clamp_non_negative
from app.services.aggregation_service import PeriodAggregator

logger = logging.getLogger(__name__)


class GapCalculator:
    """
    Gap scoperto di un bucket: max(0, vendite nette - allocazioni approvate).

    Mai negativo: un metodo già coperto in eccesso riporta gap zero.
    """

    def __init__(self, aggregator: Optional[PeriodAggregator] = None) -> None:
        self.aggregator = aggregator or PeriodAggregator()

    async def gap(
        self,
        db: AsyncSession,
        payment_method_id: uuid.UUID,
        start_date: date,
        end_date: date,
        exclude_deposit_id: Optional[uuid.UUID] = None,
    ) -> Decimal:
        totals = await self.aggregator.aggregate(
            db, payment_method_id, start_date, end_date, exclude_deposit_id
        )
        return clamp_non_negative(totals.net_invoices - totals.approved_alloc)
