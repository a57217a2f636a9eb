"""Cross-ratings recorded when a trip completes."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from brokerage.domain.enums import PartyType
from brokerage.domain.errors import ValidationError
from brokerage.infrastructure.models import CompanyModel, DriverModel, RatingModel
from brokerage.infrastructure.repositories import RatingRepository

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


def validate_rating(value: Optional[int]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("Rating must be an integer", {"rating": value})
    if not MIN_RATING <= value <= MAX_RATING:
        raise ValidationError(
            f"Rating must be between {MIN_RATING} and {MAX_RATING}",
            {"rating": value},
        )
    return value


class RatingRecorder:
    """Stores a rating and refreshes the rated party's running average."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def rate_company(
        self,
        *,
        trip_id: int,
        driver_id: int,
        company_id: int,
        rating: int,
        comment: Optional[str] = None,
    ) -> RatingModel:
        return await self._record(
            trip_id=trip_id,
            rater=(PartyType.DRIVER, driver_id),
            rated=(PartyType.COMPANY, company_id),
            rating=rating,
            comment=comment,
        )

    async def rate_driver(
        self,
        *,
        trip_id: int,
        company_id: int,
        driver_id: int,
        rating: int,
        comment: Optional[str] = None,
    ) -> RatingModel:
        return await self._record(
            trip_id=trip_id,
            rater=(PartyType.COMPANY, company_id),
            rated=(PartyType.DRIVER, driver_id),
            rating=rating,
            comment=comment,
        )

    async def _record(self, *, trip_id, rater, rated, rating, comment) -> RatingModel:
        validate_rating(rating)
        rated_type, rated_id = rated
        model = CompanyModel if rated_type == PartyType.COMPANY else DriverModel

        async with self.session_factory() as session, session.begin():
            repo = RatingRepository(session)
            saved = await repo.create(
                RatingModel(
                    trip_id=trip_id,
                    rater_type=rater[0],
                    rater_id=rater[1],
                    rated_type=rated_type,
                    rated_id=rated_id,
                    rating=rating,
                    comment=comment,
                )
            )
            average, count = await repo.summary_for(rated_type, rated_id)
            await session.execute(
                update(model)
                .where(model.id == rated_id)
                .values(rating=round(average, 2), rating_count=count)
            )

        logger.info(
            "Recorded %d-star rating for %s %s (trip %s)",
            rating,
            rated_type.value,
            rated_id,
            trip_id,
        )
        return saved
