"""Milestone detection fed by committed watch status changes."""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Protocol, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import Database
from ..db_models import (
    EpisodeWatchStatus,
    MovieWatchStatus,
    ProfileAchievement,
    Show,
)
from ..models import StatusChange, WatchStatus

logger = logging.getLogger(__name__)


class AchievementHook(Protocol):
    """Receives the change set of every successful status mutation."""

    async def on_status_changes(
        self, profile_id: int, changes: Sequence[StatusChange]
    ) -> None: ...


class AchievementType(str, Enum):
    FIRST_EPISODE = "FIRST_EPISODE"
    EPISODES_WATCHED = "EPISODES_WATCHED"
    MOVIES_WATCHED = "MOVIES_WATCHED"
    SHOW_COMPLETED = "SHOW_COMPLETED"


class MilestoneRecorder:
    """Records episode, movie and show-completion milestones for a profile.

    Each ``(type, threshold)`` pair is stored at most once per profile. Show
    completions use the show id as their threshold.
    """

    def __init__(
        self,
        database: Database,
        *,
        episode_milestones: Sequence[int],
        movie_milestones: Sequence[int],
    ):
        self._database = database
        self._episode_milestones = tuple(sorted(episode_milestones))
        self._movie_milestones = tuple(sorted(movie_milestones))

    async def on_status_changes(
        self, profile_id: int, changes: Sequence[StatusChange]
    ) -> None:
        recorded = await self.record_milestones(profile_id, changes)
        if recorded:
            logger.info(
                "Recorded %d new achievements for profile %s", recorded, profile_id
            )

    async def record_milestones(
        self, profile_id: int, changes: Sequence[StatusChange]
    ) -> int:
        """Store every milestone the change set unlocks; return how many were new."""

        def _became_watched(entity_type: str) -> list[StatusChange]:
            return [
                change
                for change in changes
                if change.entity_type == entity_type
                and change.to_status == WatchStatus.WATCHED
                and change.from_status != WatchStatus.WATCHED
            ]

        episodes = _became_watched("episode")
        movies = _became_watched("movie")
        shows = _became_watched("show")
        if not (episodes or movies or shows):
            return 0

        async with self._database.transaction() as session:
            existing = await self._existing_thresholds(session, profile_id)
            pending: list[tuple[AchievementType, int, dict[str, object] | None]] = []

            if episodes:
                watched = await self._count_watched(
                    session, EpisodeWatchStatus, profile_id
                )
                if watched >= 1:
                    pending.append((AchievementType.FIRST_EPISODE, 1, None))
                pending.extend(
                    (AchievementType.EPISODES_WATCHED, threshold, None)
                    for threshold in self._episode_milestones
                    if watched >= threshold
                )

            if movies:
                watched = await self._count_watched(
                    session, MovieWatchStatus, profile_id
                )
                pending.extend(
                    (AchievementType.MOVIES_WATCHED, threshold, None)
                    for threshold in self._movie_milestones
                    if watched >= threshold
                )

            for change in shows:
                title = await session.scalar(
                    select(Show.title).where(Show.id == change.entity_id)
                )
                pending.append(
                    (
                        AchievementType.SHOW_COMPLETED,
                        change.entity_id,
                        {"showId": change.entity_id, "showTitle": title},
                    )
                )

            now = datetime.utcnow()
            recorded = 0
            for achievement_type, threshold, details in pending:
                key = (achievement_type.value, threshold)
                if key in existing:
                    continue
                existing.add(key)
                session.add(
                    ProfileAchievement(
                        profile_id=profile_id,
                        achievement_type=achievement_type.value,
                        threshold_value=threshold,
                        achieved_at=now,
                        details=details,
                    )
                )
                recorded += 1
        return recorded

    async def list_achievements(self, profile_id: int) -> list[ProfileAchievement]:
        async with self._database.session() as session:
            result = await session.execute(
                select(ProfileAchievement)
                .where(ProfileAchievement.profile_id == profile_id)
                .order_by(ProfileAchievement.achieved_at, ProfileAchievement.id)
            )
            return list(result.scalars())

    @staticmethod
    async def _existing_thresholds(
        session: AsyncSession, profile_id: int
    ) -> set[tuple[str, int]]:
        result = await session.execute(
            select(
                ProfileAchievement.achievement_type,
                ProfileAchievement.threshold_value,
            ).where(ProfileAchievement.profile_id == profile_id)
        )
        return {(row.achievement_type, row.threshold_value) for row in result}

    @staticmethod
    async def _count_watched(session: AsyncSession, model, profile_id: int) -> int:
        count = await session.scalar(
            select(func.count()).select_from(model).where(
                model.profile_id == profile_id,
                model.status == WatchStatus.WATCHED.value,
            )
        )
        return int(count or 0)
