"""Creating status rows when a profile starts tracking content."""

from __future__ import annotations

import logging
from datetime import date
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import Database
from ..db_models import (
    Episode,
    EpisodeWatchStatus,
    Movie,
    MovieWatchStatus,
    Profile,
    Season,
    SeasonWatchStatus,
    Show,
    ShowWatchStatus,
)
from ..errors import NotFoundError, WatchStatusError, handle_database_error
from ..status_calculator import initial_status
from .cache import ProfileCache

logger = logging.getLogger(__name__)


class FavoritesService:
    """Adds shows and movies to a profile's list.

    Favoriting a show creates status rows for the show and for every season
    and episode it currently has. Rows start ``NOT_WATCHED``, or ``UNAIRED``
    when the entity's own air date lies in the future. Rows that already
    exist are left as they are.
    """

    def __init__(
        self,
        database: Database,
        cache: ProfileCache,
        *,
        clock: Callable[[], date] = date.today,
    ):
        self._database = database
        self._cache = cache
        self._clock = clock

    async def save_show_favorite(
        self, account_id: int, profile_id: int, show_id: int
    ) -> int:
        """Track a show and its children; return the number of rows created."""

        try:
            async with self._database.transaction() as session:
                await self._require_profile(session, profile_id)
                show = await session.get(Show, show_id)
                if show is None:
                    raise NotFoundError(f"Show {show_id} not found")
                created = await self._create_show_rows(session, profile_id, show)
        except WatchStatusError:
            raise
        except Exception as exc:
            raise handle_database_error(exc, "saving a show as a favorite") from exc

        logger.info(
            "Profile %s now tracks show %s (%d status rows created)",
            profile_id,
            show_id,
            created,
        )
        self._invalidate(account_id, profile_id)
        return created

    async def save_movie_favorite(
        self, account_id: int, profile_id: int, movie_id: int
    ) -> int:
        try:
            async with self._database.transaction() as session:
                await self._require_profile(session, profile_id)
                movie = await session.get(Movie, movie_id)
                if movie is None:
                    raise NotFoundError(f"Movie {movie_id} not found")
                existing = await session.get(MovieWatchStatus, (profile_id, movie_id))
                created = 0
                if existing is None:
                    session.add(
                        MovieWatchStatus(
                            profile_id=profile_id,
                            movie_id=movie_id,
                            status=initial_status(
                                movie.release_date, self._clock()
                            ).value,
                        )
                    )
                    created = 1
        except WatchStatusError:
            raise
        except Exception as exc:
            raise handle_database_error(exc, "saving a movie as a favorite") from exc

        self._invalidate(account_id, profile_id)
        return created

    def _invalidate(self, account_id: int, profile_id: int) -> None:
        try:
            self._cache.invalidate_profile(account_id, profile_id)
        except Exception:
            logger.exception(
                "Cache invalidation failed for account %s profile %s",
                account_id,
                profile_id,
            )

    @staticmethod
    async def _require_profile(session: AsyncSession, profile_id: int) -> None:
        if await session.get(Profile, profile_id) is None:
            raise NotFoundError(f"Profile {profile_id} not found")

    async def _create_show_rows(
        self, session: AsyncSession, profile_id: int, show: Show
    ) -> int:
        today = self._clock()
        created = 0

        if await session.get(ShowWatchStatus, (profile_id, show.id)) is None:
            session.add(
                ShowWatchStatus(
                    profile_id=profile_id,
                    show_id=show.id,
                    status=initial_status(show.air_date, today).value,
                )
            )
            created += 1

        seasons = (
            await session.execute(
                select(Season.id, Season.air_date, SeasonWatchStatus.status)
                .outerjoin(
                    SeasonWatchStatus,
                    (SeasonWatchStatus.season_id == Season.id)
                    & (SeasonWatchStatus.profile_id == profile_id),
                )
                .where(Season.show_id == show.id)
            )
        ).all()
        for season in seasons:
            if season.status is not None:
                continue
            session.add(
                SeasonWatchStatus(
                    profile_id=profile_id,
                    season_id=season.id,
                    status=initial_status(season.air_date, today).value,
                )
            )
            created += 1

        episodes = (
            await session.execute(
                select(Episode.id, Episode.air_date, EpisodeWatchStatus.status)
                .outerjoin(
                    EpisodeWatchStatus,
                    (EpisodeWatchStatus.episode_id == Episode.id)
                    & (EpisodeWatchStatus.profile_id == profile_id),
                )
                .where(Episode.show_id == show.id)
            )
        ).all()
        for episode in episodes:
            if episode.status is not None:
                continue
            session.add(
                EpisodeWatchStatus(
                    profile_id=profile_id,
                    episode_id=episode.id,
                    status=initial_status(episode.air_date, today).value,
                )
            )
            created += 1
        return created
