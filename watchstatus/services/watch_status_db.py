"""Transactional cascades keeping episode, season and show statuses consistent."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Iterable, Sequence

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import Database
from ..db_models import (
    Episode,
    EpisodeWatchStatus,
    Movie,
    MovieWatchStatus,
    Season,
    SeasonWatchStatus,
    Show,
    ShowWatchStatus,
)
from ..errors import (
    NoAffectedRowsError,
    NotFoundError,
    WatchStatusError,
    handle_database_error,
)
from ..models import (
    EntityType,
    ProfileShowEntry,
    SeasonEpisodeCounts,
    StatusChange,
    StatusUpdateResult,
    WatchStatus,
    coerce_status,
    stored_status,
)
from ..status_calculator import (
    calculate_movie_status,
    calculate_season_status,
    calculate_show_status,
    rewrite_episode_status,
    rewrites_descendants,
)

logger = logging.getLogger(__name__)

_STATUS_TABLES: dict[EntityType, tuple[Any, Any]] = {
    "show": (ShowWatchStatus, ShowWatchStatus.show_id),
    "season": (SeasonWatchStatus, SeasonWatchStatus.season_id),
    "episode": (EpisodeWatchStatus, EpisodeWatchStatus.episode_id),
    "movie": (MovieWatchStatus, MovieWatchStatus.movie_id),
}


@dataclass(frozen=True)
class EpisodeContext:
    """An episode with its own, its season's and its show's stored status."""

    episode_id: int
    season_id: int
    show_id: int
    air_date: date | None
    status: WatchStatus
    season_status: WatchStatus
    show_status: WatchStatus


@dataclass(frozen=True)
class SeasonContext:
    season_id: int
    show_id: int
    status: WatchStatus
    show_status: WatchStatus


@dataclass(frozen=True)
class ShowContext:
    show_id: int
    status: WatchStatus


@dataclass(frozen=True)
class MovieContext:
    movie_id: int
    release_date: date | None
    status: WatchStatus


@dataclass(frozen=True)
class EpisodeStatusRow:
    episode_id: int
    season_id: int
    air_date: date | None
    status: WatchStatus


@dataclass(frozen=True)
class SeasonStatusRow:
    season_id: int
    status: WatchStatus
    aired_episodes: int


class WatchStatusDbService:
    """Runs every status cascade inside a single database transaction.

    Each public method returns a :class:`StatusUpdateResult`. A write that
    touches no row rolls the whole cascade back and yields ``success=False``;
    unknown ids and invalid statuses raise before anything is written.
    """

    def __init__(
        self,
        database: Database,
        *,
        clock: Callable[[], date] = date.today,
    ):
        self._database = database
        self._clock = clock

    # ------------------------------------------------------------------
    # Public cascades
    # ------------------------------------------------------------------
    async def update_episode_watch_status(
        self, profile_id: int, episode_id: int, status: WatchStatus | str
    ) -> StatusUpdateResult:
        """Set one episode, then recompute its season and, on change, its show."""

        target = coerce_status(status, "episode")

        async def _work(session: AsyncSession) -> StatusUpdateResult:
            context = await self._load_episode_context(session, profile_id, episode_id)
            changes: list[StatusChange] = []
            affected = await self._write_status(
                session, "episode", profile_id, episode_id, target
            )
            if context.status != target:
                changes.append(
                    StatusChange(
                        entity_type="episode",
                        entity_id=episode_id,
                        from_status=context.status,
                        to_status=target,
                        reason=f"Episode marked as {target}",
                    )
                )

            counts = await self._season_counts(session, profile_id, context.season_id)
            season_status = calculate_season_status(counts)
            if season_status == context.season_status:
                logger.debug(
                    "Season %s still %s for profile %s, show %s left untouched",
                    context.season_id,
                    season_status,
                    profile_id,
                    context.show_id,
                )
                return StatusUpdateResult(
                    success=True, changes=changes, affected_rows=affected
                )

            affected += await self._write_status(
                session, "season", profile_id, context.season_id, season_status
            )
            changes.append(
                StatusChange(
                    entity_type="season",
                    entity_id=context.season_id,
                    from_status=context.season_status,
                    to_status=season_status,
                    reason=f"Episode {episode_id} status changed",
                )
            )

            show_affected, show_change = await self._recompute_show(
                session,
                profile_id,
                context.show_id,
                context.show_status,
                reason=f"Season {context.season_id} status changed",
            )
            affected += show_affected
            if show_change is not None:
                changes.append(show_change)
            return StatusUpdateResult(success=True, changes=changes, affected_rows=affected)

        return await self._run_cascade(
            "updating episode watch status with propagation", _work
        )

    async def update_season_watch_status(
        self, profile_id: int, season_id: int, status: WatchStatus | str
    ) -> StatusUpdateResult:
        """Apply a user-declared season status to the season and its episodes."""

        target = coerce_status(status, "season")

        async def _work(session: AsyncSession) -> StatusUpdateResult:
            today = self._clock()
            context = await self._load_season_context(session, profile_id, season_id)
            reason = f"Season {season_id} marked as {target}"
            episode_changes: list[StatusChange] = []
            affected = 0
            season_status = target

            if rewrites_descendants(target):
                episodes = await self._load_episode_rows(
                    session, profile_id, Episode.season_id == season_id
                )
                affected, episode_changes = await self._rewrite_episodes(
                    session, profile_id, episodes, target, today, reason
                )
                season_status = calculate_season_status(
                    await self._season_counts(session, profile_id, season_id)
                )

            affected += await self._write_status(
                session, "season", profile_id, season_id, season_status
            )
            changes = [
                StatusChange(
                    entity_type="season",
                    entity_id=season_id,
                    from_status=context.status,
                    to_status=season_status,
                    reason=f"Season manually set to {target}",
                ),
                *episode_changes,
            ]

            if season_status == context.status:
                logger.debug(
                    "Season %s still %s for profile %s, show %s left untouched",
                    season_id,
                    season_status,
                    profile_id,
                    context.show_id,
                )
                return StatusUpdateResult(
                    success=True, changes=changes, affected_rows=affected
                )

            show_affected, show_change = await self._recompute_show(
                session,
                profile_id,
                context.show_id,
                context.show_status,
                reason=f"Season {season_id} status changed",
            )
            affected += show_affected
            if show_change is not None:
                changes.insert(0, show_change)
            return StatusUpdateResult(success=True, changes=changes, affected_rows=affected)

        return await self._run_cascade(
            "updating season watch status with propagation", _work
        )

    async def update_show_watch_status(
        self, profile_id: int, show_id: int, status: WatchStatus | str
    ) -> StatusUpdateResult:
        """Apply a user-declared show status to the show and everything under it."""

        target = coerce_status(status, "show")

        async def _work(session: AsyncSession) -> StatusUpdateResult:
            today = self._clock()
            context = await self._load_show_context(session, profile_id, show_id)
            reason = f"Show manually set to {target}"
            seasons = await self._load_season_rows(session, profile_id, show_id)

            affected = 0
            season_changes: list[StatusChange] = []
            episode_changes: list[StatusChange] = []
            season_statuses: list[tuple[WatchStatus, int]] = []

            rewrites_episodes = rewrites_descendants(target)
            if rewrites_episodes:
                episodes = await self._load_episode_rows(
                    session, profile_id, Episode.show_id == show_id
                )
                affected, episode_changes = await self._rewrite_episodes(
                    session, profile_id, episodes, target, today, reason
                )

            for season in seasons:
                season_status = target
                if rewrites_episodes:
                    season_status = calculate_season_status(
                        await self._season_counts(session, profile_id, season.season_id)
                    )
                affected += await self._write_status(
                    session, "season", profile_id, season.season_id, season_status
                )
                season_statuses.append((season_status, season.aired_episodes))
                season_changes.append(
                    StatusChange(
                        entity_type="season",
                        entity_id=season.season_id,
                        from_status=season.status,
                        to_status=season_status,
                        reason=reason,
                    )
                )

            show_status = target
            if rewrites_episodes:
                show_status = calculate_show_status(season_statuses)
            affected += await self._write_status(
                session, "show", profile_id, show_id, show_status
            )
            show_change = StatusChange(
                entity_type="show",
                entity_id=show_id,
                from_status=context.status,
                to_status=show_status,
                reason=reason,
            )
            return StatusUpdateResult(
                success=True,
                changes=[show_change, *season_changes, *episode_changes],
                affected_rows=affected,
            )

        return await self._run_cascade(
            "updating show watch status with propagation", _work
        )

    async def check_and_update_season_watch_status(
        self, profile_id: int, season_id: int
    ) -> StatusUpdateResult:
        """Recompute a season from its episodes; write only if it drifted."""

        async def _work(session: AsyncSession) -> StatusUpdateResult:
            context = await self._load_season_context(session, profile_id, season_id)
            season_status = calculate_season_status(
                await self._season_counts(session, profile_id, season_id)
            )
            if season_status == context.status:
                return StatusUpdateResult(success=True)

            affected = await self._write_status(
                session, "season", profile_id, season_id, season_status
            )
            changes = [
                StatusChange(
                    entity_type="season",
                    entity_id=season_id,
                    from_status=context.status,
                    to_status=season_status,
                    reason="Season status recalculated",
                )
            ]
            show_affected, show_change = await self._recompute_show(
                session,
                profile_id,
                context.show_id,
                context.show_status,
                reason=f"Season {season_id} status changed",
            )
            affected += show_affected
            if show_change is not None:
                changes.append(show_change)
            return StatusUpdateResult(success=True, changes=changes, affected_rows=affected)

        return await self._run_cascade("recalculating season watch status", _work)

    async def check_and_update_show_watch_status(
        self, profile_id: int, show_id: int
    ) -> StatusUpdateResult:
        """Recompute every season of a show, then the show itself."""

        async def _work(session: AsyncSession) -> StatusUpdateResult:
            context = await self._load_show_context(session, profile_id, show_id)
            seasons = await self._load_season_rows(session, profile_id, show_id)
            changes: list[StatusChange] = []
            affected = 0
            season_statuses: list[tuple[WatchStatus, int]] = []

            for season in seasons:
                season_status = calculate_season_status(
                    await self._season_counts(session, profile_id, season.season_id)
                )
                season_statuses.append((season_status, season.aired_episodes))
                if season_status == season.status:
                    continue
                affected += await self._write_status(
                    session, "season", profile_id, season.season_id, season_status
                )
                changes.append(
                    StatusChange(
                        entity_type="season",
                        entity_id=season.season_id,
                        from_status=season.status,
                        to_status=season_status,
                        reason="Season status recalculated",
                    )
                )

            show_status = calculate_show_status(season_statuses)
            if show_status != context.status:
                affected += await self._write_status(
                    session, "show", profile_id, show_id, show_status
                )
                changes.insert(
                    0,
                    StatusChange(
                        entity_type="show",
                        entity_id=show_id,
                        from_status=context.status,
                        to_status=show_status,
                        reason="Show status recalculated",
                    ),
                )
            return StatusUpdateResult(success=True, changes=changes, affected_rows=affected)

        return await self._run_cascade("recalculating show watch status", _work)

    async def update_show_watch_status_for_new_content(
        self, profile_id: int, show_ids: Iterable[int]
    ) -> StatusUpdateResult:
        """Move finished shows back to ``WATCHING`` after new episodes arrived.

        Only shows currently ``WATCHED`` change; every other status is kept.
        """

        unique_ids = sorted(set(show_ids))
        if not unique_ids:
            return StatusUpdateResult(success=True)

        async def _work(session: AsyncSession) -> StatusUpdateResult:
            finished = and_(
                ShowWatchStatus.profile_id == profile_id,
                ShowWatchStatus.show_id.in_(unique_ids),
                ShowWatchStatus.status == WatchStatus.WATCHED.value,
            )
            result = await session.execute(
                select(ShowWatchStatus.show_id)
                .where(finished)
                .order_by(ShowWatchStatus.show_id)
                .with_for_update()
            )
            flipped = list(result.scalars())
            if not flipped:
                return StatusUpdateResult(success=True)

            update_result = await session.execute(
                update(ShowWatchStatus)
                .where(finished)
                .values(status=WatchStatus.WATCHING.value, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            if update_result.rowcount == 0:
                raise NoAffectedRowsError(
                    f"No show watch status rows updated for profile {profile_id}"
                )
            changes = [
                StatusChange(
                    entity_type="show",
                    entity_id=show_id,
                    from_status=WatchStatus.WATCHED,
                    to_status=WatchStatus.WATCHING,
                    reason="New content available",
                )
                for show_id in flipped
            ]
            return StatusUpdateResult(
                success=True, changes=changes, affected_rows=update_result.rowcount
            )

        return await self._run_cascade(
            "updating show watch status for new content", _work
        )

    async def update_movie_watch_status(
        self, profile_id: int, movie_id: int, status: WatchStatus | str
    ) -> StatusUpdateResult:
        target = coerce_status(status, "movie")

        async def _work(session: AsyncSession) -> StatusUpdateResult:
            context = await self._load_movie_context(session, profile_id, movie_id)
            affected = await self._write_status(
                session, "movie", profile_id, movie_id, target
            )
            changes: list[StatusChange] = []
            if context.status != target:
                changes.append(
                    StatusChange(
                        entity_type="movie",
                        entity_id=movie_id,
                        from_status=context.status,
                        to_status=target,
                        reason=f"Movie marked as {target}",
                    )
                )
            return StatusUpdateResult(success=True, changes=changes, affected_rows=affected)

        return await self._run_cascade("updating movie watch status", _work)

    async def check_and_update_movie_watch_status(
        self, profile_id: int, movie_id: int
    ) -> StatusUpdateResult:
        """Flip a movie between ``UNAIRED`` and ``NOT_WATCHED`` by release date."""

        async def _work(session: AsyncSession) -> StatusUpdateResult:
            context = await self._load_movie_context(session, profile_id, movie_id)
            movie_status = calculate_movie_status(
                context.status, context.release_date, self._clock()
            )
            if movie_status == context.status:
                return StatusUpdateResult(success=True)
            affected = await self._write_status(
                session, "movie", profile_id, movie_id, movie_status
            )
            change = StatusChange(
                entity_type="movie",
                entity_id=movie_id,
                from_status=context.status,
                to_status=movie_status,
                reason="Movie release status recalculated",
            )
            return StatusUpdateResult(success=True, changes=[change], affected_rows=affected)

        return await self._run_cascade("recalculating movie watch status", _work)

    async def list_profile_shows(self, profile_id: int) -> list[ProfileShowEntry]:
        """Return every favorited show of a profile with its stored status."""

        try:
            async with self._database.session() as session:
                result = await session.execute(
                    select(Show.id, Show.title, Show.in_production, ShowWatchStatus.status)
                    .join(ShowWatchStatus, ShowWatchStatus.show_id == Show.id)
                    .where(ShowWatchStatus.profile_id == profile_id)
                    .order_by(Show.title, Show.id)
                )
                return [
                    ProfileShowEntry(
                        show_id=row.id,
                        title=row.title,
                        in_production=bool(row.in_production),
                        status=stored_status(row.status),
                    )
                    for row in result
                ]
        except Exception as exc:
            raise handle_database_error(exc, "listing profile shows") from exc

    # ------------------------------------------------------------------
    # Transaction handling
    # ------------------------------------------------------------------
    async def _run_cascade(
        self,
        context: str,
        work: Callable[[AsyncSession], Awaitable[StatusUpdateResult]],
    ) -> StatusUpdateResult:
        try:
            async with self._database.transaction() as session:
                return await work(session)
        except NoAffectedRowsError as exc:
            logger.warning("Rolled back while %s: %s", context, exc)
            return StatusUpdateResult(success=False, message=exc.message)
        except WatchStatusError:
            raise
        except Exception as exc:
            raise handle_database_error(exc, context) from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def _load_episode_context(
        self, session: AsyncSession, profile_id: int, episode_id: int
    ) -> EpisodeContext:
        stmt = (
            select(
                Episode.id,
                Episode.season_id,
                Season.show_id,
                Episode.air_date,
                EpisodeWatchStatus.status.label("episode_status"),
                SeasonWatchStatus.status.label("season_status"),
                ShowWatchStatus.status.label("show_status"),
            )
            .join(Season, Season.id == Episode.season_id)
            .outerjoin(
                EpisodeWatchStatus,
                and_(
                    EpisodeWatchStatus.episode_id == Episode.id,
                    EpisodeWatchStatus.profile_id == profile_id,
                ),
            )
            .outerjoin(
                SeasonWatchStatus,
                and_(
                    SeasonWatchStatus.season_id == Season.id,
                    SeasonWatchStatus.profile_id == profile_id,
                ),
            )
            .outerjoin(
                ShowWatchStatus,
                and_(
                    ShowWatchStatus.show_id == Season.show_id,
                    ShowWatchStatus.profile_id == profile_id,
                ),
            )
            .where(Episode.id == episode_id)
        )
        row = (await session.execute(stmt)).one_or_none()
        if row is None:
            raise NotFoundError(f"Episode {episode_id} not found")
        return EpisodeContext(
            episode_id=row.id,
            season_id=row.season_id,
            show_id=row.show_id,
            air_date=row.air_date,
            status=stored_status(row.episode_status),
            season_status=stored_status(row.season_status),
            show_status=stored_status(row.show_status),
        )

    async def _load_season_context(
        self, session: AsyncSession, profile_id: int, season_id: int
    ) -> SeasonContext:
        stmt = (
            select(
                Season.id,
                Season.show_id,
                SeasonWatchStatus.status.label("season_status"),
                ShowWatchStatus.status.label("show_status"),
            )
            .outerjoin(
                SeasonWatchStatus,
                and_(
                    SeasonWatchStatus.season_id == Season.id,
                    SeasonWatchStatus.profile_id == profile_id,
                ),
            )
            .outerjoin(
                ShowWatchStatus,
                and_(
                    ShowWatchStatus.show_id == Season.show_id,
                    ShowWatchStatus.profile_id == profile_id,
                ),
            )
            .where(Season.id == season_id)
        )
        row = (await session.execute(stmt)).one_or_none()
        if row is None:
            raise NotFoundError(f"Season {season_id} not found")
        return SeasonContext(
            season_id=row.id,
            show_id=row.show_id,
            status=stored_status(row.season_status),
            show_status=stored_status(row.show_status),
        )

    async def _load_show_context(
        self, session: AsyncSession, profile_id: int, show_id: int
    ) -> ShowContext:
        stmt = (
            select(Show.id, ShowWatchStatus.status)
            .outerjoin(
                ShowWatchStatus,
                and_(
                    ShowWatchStatus.show_id == Show.id,
                    ShowWatchStatus.profile_id == profile_id,
                ),
            )
            .where(Show.id == show_id)
        )
        row = (await session.execute(stmt)).one_or_none()
        if row is None:
            raise NotFoundError(f"Show {show_id} not found")
        return ShowContext(show_id=row.id, status=stored_status(row.status))

    async def _load_movie_context(
        self, session: AsyncSession, profile_id: int, movie_id: int
    ) -> MovieContext:
        stmt = (
            select(Movie.id, Movie.release_date, MovieWatchStatus.status)
            .outerjoin(
                MovieWatchStatus,
                and_(
                    MovieWatchStatus.movie_id == Movie.id,
                    MovieWatchStatus.profile_id == profile_id,
                ),
            )
            .where(Movie.id == movie_id)
        )
        row = (await session.execute(stmt)).one_or_none()
        if row is None:
            raise NotFoundError(f"Movie {movie_id} not found")
        return MovieContext(
            movie_id=row.id,
            release_date=row.release_date,
            status=stored_status(row.status),
        )

    async def _load_episode_rows(
        self, session: AsyncSession, profile_id: int, condition: Any
    ) -> list[EpisodeStatusRow]:
        """Lock and return the tracked episode rows matching ``condition``."""

        stmt = (
            select(
                Episode.id,
                Episode.season_id,
                Episode.air_date,
                EpisodeWatchStatus.status,
            )
            .join(
                EpisodeWatchStatus,
                and_(
                    EpisodeWatchStatus.episode_id == Episode.id,
                    EpisodeWatchStatus.profile_id == profile_id,
                ),
            )
            .where(condition)
            .order_by(Episode.season_id, Episode.episode_number, Episode.id)
            .with_for_update()
        )
        result = await session.execute(stmt)
        return [
            EpisodeStatusRow(
                episode_id=row.id,
                season_id=row.season_id,
                air_date=row.air_date,
                status=stored_status(row.status),
            )
            for row in result
        ]

    async def _load_season_rows(
        self, session: AsyncSession, profile_id: int, show_id: int
    ) -> list[SeasonStatusRow]:
        today = self._clock()
        aired_episodes = (
            select(func.count(Episode.id))
            .where(
                Episode.season_id == Season.id,
                or_(Episode.air_date.is_(None), Episode.air_date <= today),
            )
            .correlate(Season)
            .scalar_subquery()
        )
        stmt = (
            select(
                Season.id,
                SeasonWatchStatus.status,
                aired_episodes.label("aired_episodes"),
            )
            .outerjoin(
                SeasonWatchStatus,
                and_(
                    SeasonWatchStatus.season_id == Season.id,
                    SeasonWatchStatus.profile_id == profile_id,
                ),
            )
            .where(Season.show_id == show_id)
            .order_by(Season.season_number, Season.id)
        )
        result = await session.execute(stmt)
        return [
            SeasonStatusRow(
                season_id=row.id,
                status=stored_status(row.status),
                aired_episodes=int(row.aired_episodes or 0),
            )
            for row in result
        ]

    async def _season_counts(
        self, session: AsyncSession, profile_id: int, season_id: int
    ) -> SeasonEpisodeCounts:
        today = self._clock()
        aired = or_(Episode.air_date.is_(None), Episode.air_date <= today)
        watched = EpisodeWatchStatus.status == WatchStatus.WATCHED.value
        stmt = (
            select(
                func.count(Episode.id),
                func.coalesce(func.sum(case((aired, 1), else_=0)), 0),
                func.coalesce(func.sum(case((aired, 0), else_=1)), 0),
                func.coalesce(func.sum(case((and_(aired, watched), 1), else_=0)), 0),
            )
            .select_from(Episode)
            .outerjoin(
                EpisodeWatchStatus,
                and_(
                    EpisodeWatchStatus.episode_id == Episode.id,
                    EpisodeWatchStatus.profile_id == profile_id,
                ),
            )
            .where(Episode.season_id == season_id)
        )
        total, aired_count, future_count, watched_aired = (await session.execute(stmt)).one()
        return SeasonEpisodeCounts(
            total_episodes=int(total),
            aired_episodes=int(aired_count),
            future_episodes=int(future_count),
            watched_aired_episodes=int(watched_aired),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def _write_status(
        self,
        session: AsyncSession,
        entity_type: EntityType,
        profile_id: int,
        entity_id: int,
        status: WatchStatus,
    ) -> int:
        model, key_column = _STATUS_TABLES[entity_type]
        result = await session.execute(
            update(model)
            .where(model.profile_id == profile_id, key_column == entity_id)
            .values(status=status.value, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NoAffectedRowsError(
                f"No {entity_type} watch status row for profile {profile_id} "
                f"and {entity_type} {entity_id}"
            )
        return result.rowcount

    async def _recompute_show(
        self,
        session: AsyncSession,
        profile_id: int,
        show_id: int,
        current: WatchStatus,
        *,
        reason: str,
    ) -> tuple[int, StatusChange | None]:
        seasons = await self._load_season_rows(session, profile_id, show_id)
        show_status = calculate_show_status(
            (season.status, season.aired_episodes) for season in seasons
        )
        if show_status == current:
            return 0, None
        affected = await self._write_status(
            session, "show", profile_id, show_id, show_status
        )
        return affected, StatusChange(
            entity_type="show",
            entity_id=show_id,
            from_status=current,
            to_status=show_status,
            reason=reason,
        )

    async def _rewrite_episodes(
        self,
        session: AsyncSession,
        profile_id: int,
        episodes: Sequence[EpisodeStatusRow],
        target: WatchStatus,
        today: date,
        reason: str,
    ) -> tuple[int, list[StatusChange]]:
        """Apply the top-down episode rule for ``target`` to ``episodes``."""

        grouped: dict[WatchStatus, list[int]] = {}
        changes: list[StatusChange] = []
        for episode in episodes:
            new_status = rewrite_episode_status(target, episode.air_date, today)
            if new_status is None:
                continue
            grouped.setdefault(new_status, []).append(episode.episode_id)
            changes.append(
                StatusChange(
                    entity_type="episode",
                    entity_id=episode.episode_id,
                    from_status=episode.status,
                    to_status=new_status,
                    reason=reason,
                )
            )

        affected = 0
        now = datetime.utcnow()
        for new_status, episode_ids in grouped.items():
            result = await session.execute(
                update(EpisodeWatchStatus)
                .where(
                    EpisodeWatchStatus.profile_id == profile_id,
                    EpisodeWatchStatus.episode_id.in_(episode_ids),
                )
                .values(status=new_status.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NoAffectedRowsError(
                    f"No episode watch status rows updated for profile {profile_id}"
                )
            affected += result.rowcount
        return affected, changes
