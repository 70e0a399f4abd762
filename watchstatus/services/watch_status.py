"""Boundary-facing watch status operations."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Awaitable, Iterable, Sequence

from ..errors import StatusUpdateError, handle_service_error
from ..models import ENTITY_ORDER, EntityType, StatusChange, StatusUpdateResult, WatchStatus
from .achievements import AchievementHook
from .cache import ProfileCache
from .watch_status_db import WatchStatusDbService

logger = logging.getLogger(__name__)

NO_CHANGES_MESSAGE = "No status changes occurred"


def format_changes_message(changes: Sequence[StatusChange]) -> str:
    """Summarise a change set, e.g. ``Updated status for 1 show, 2 seasons``."""

    if not changes:
        return NO_CHANGES_MESSAGE

    counts = Counter(change.entity_type for change in changes)
    parts = [
        f"{counts[entity_type]} {entity_type}{'s' if counts[entity_type] > 1 else ''}"
        for entity_type in ENTITY_ORDER
        if counts[entity_type]
    ]
    return f"Updated status for {', '.join(parts)}"


class WatchStatusService:
    """Runs cascades and handles what follows a commit.

    A failed cascade is raised as :class:`StatusUpdateError`. After a commit
    the profile cache is invalidated when a show (or movie) changed, and the
    achievement hook runs in the background. Failures in either are logged
    and never reach the caller.
    """

    def __init__(
        self,
        db_service: WatchStatusDbService,
        cache: ProfileCache,
        achievements: AchievementHook | None = None,
    ):
        self._db = db_service
        self._cache = cache
        self._achievements = achievements
        self._hook_tasks: set[asyncio.Task[None]] = set()

    async def update_episode_watch_status(
        self,
        account_id: int,
        profile_id: int,
        episode_id: int,
        status: WatchStatus | str,
    ) -> StatusUpdateResult:
        """Mark an episode, propagating to its season and show."""

        result = await self._run(
            f"update_episode_watch_status({profile_id}, {episode_id}, {status})",
            "episode",
            self._db.update_episode_watch_status(profile_id, episode_id, status),
        )
        return self._complete(account_id, profile_id, result, invalidate_on="show")

    async def update_season_watch_status(
        self,
        account_id: int,
        profile_id: int,
        season_id: int,
        status: WatchStatus | str,
    ) -> StatusUpdateResult:
        """Mark a season, rewriting its episodes and recomputing its show."""

        result = await self._run(
            f"update_season_watch_status({profile_id}, {season_id}, {status})",
            "season",
            self._db.update_season_watch_status(profile_id, season_id, status),
        )
        return self._complete(account_id, profile_id, result, invalidate_on="show")

    async def update_show_watch_status(
        self,
        account_id: int,
        profile_id: int,
        show_id: int,
        status: WatchStatus | str,
    ) -> StatusUpdateResult:
        """Mark a show, rewriting every season and episode beneath it."""

        result = await self._run(
            f"update_show_watch_status({profile_id}, {show_id}, {status})",
            "show",
            self._db.update_show_watch_status(profile_id, show_id, status),
        )
        return self._complete(account_id, profile_id, result, invalidate_on="show")

    async def check_and_update_show_status(
        self, account_id: int, profile_id: int, show_id: int
    ) -> StatusUpdateResult:
        """Recalculate a show from its seasons and episodes."""

        result = await self._run(
            f"check_and_update_show_status({profile_id}, {show_id})",
            "show",
            self._db.check_and_update_show_watch_status(profile_id, show_id),
        )
        return self._complete(
            account_id,
            profile_id,
            result,
            invalidate_on="show",
            unchanged_message="Show status is already correct",
        )

    async def check_and_update_season_status(
        self, account_id: int, profile_id: int, season_id: int
    ) -> StatusUpdateResult:
        result = await self._run(
            f"check_and_update_season_status({profile_id}, {season_id})",
            "season",
            self._db.check_and_update_season_watch_status(profile_id, season_id),
        )
        return self._complete(
            account_id,
            profile_id,
            result,
            invalidate_on="show",
            unchanged_message="Season status is already correct",
        )

    async def update_show_watch_status_for_new_content(
        self, account_id: int, profile_id: int, show_ids: Iterable[int]
    ) -> None:
        """Reopen finished shows of a profile that received new episodes."""

        show_ids = list(show_ids)
        result = await self._run(
            f"update_show_watch_status_for_new_content({profile_id}, {show_ids})",
            "show",
            self._db.update_show_watch_status_for_new_content(profile_id, show_ids),
        )
        self._complete(account_id, profile_id, result, invalidate_on="show")

    async def update_movie_watch_status(
        self,
        account_id: int,
        profile_id: int,
        movie_id: int,
        status: WatchStatus | str,
    ) -> StatusUpdateResult:
        result = await self._run(
            f"update_movie_watch_status({profile_id}, {movie_id}, {status})",
            "movie",
            self._db.update_movie_watch_status(profile_id, movie_id, status),
        )
        return self._complete(account_id, profile_id, result, invalidate_on="movie")

    async def check_and_update_movie_status(
        self, account_id: int, profile_id: int, movie_id: int
    ) -> StatusUpdateResult:
        """Move a movie out of ``UNAIRED`` once it has been released."""

        result = await self._run(
            f"check_and_update_movie_status({profile_id}, {movie_id})",
            "movie",
            self._db.check_and_update_movie_watch_status(profile_id, movie_id),
        )
        return self._complete(
            account_id,
            profile_id,
            result,
            invalidate_on="movie",
            unchanged_message="Movie status is already correct",
        )

    async def aclose(self) -> None:
        """Wait for achievement hooks that are still running."""

        if self._hook_tasks:
            await asyncio.gather(*list(self._hook_tasks))

    async def _run(
        self,
        operation: str,
        entity_type: EntityType,
        cascade: Awaitable[StatusUpdateResult],
    ) -> StatusUpdateResult:
        try:
            result = await cascade
        except Exception as exc:
            error = handle_service_error(exc, operation)
            if error is exc:
                raise
            raise error from exc

        if not result.success:
            raise StatusUpdateError(
                f"Failed to update {entity_type} watch status", operation=operation
            )
        logger.info(
            "%s committed %d changes (%d rows)",
            operation,
            len(result.changes),
            result.affected_rows,
        )
        return result

    def _complete(
        self,
        account_id: int,
        profile_id: int,
        result: StatusUpdateResult,
        *,
        invalidate_on: EntityType,
        unchanged_message: str | None = None,
    ) -> StatusUpdateResult:
        if result.changes_for(invalidate_on):
            self._invalidate(account_id, profile_id)
        self._notify_achievements(profile_id, result.changes)

        if not result.changes and unchanged_message is not None:
            message = unchanged_message
        else:
            message = format_changes_message(result.changes)
        return result.model_copy(update={"message": message})

    def _invalidate(self, account_id: int, profile_id: int) -> None:
        try:
            self._cache.invalidate_profile(account_id, profile_id)
        except Exception:
            logger.exception(
                "Cache invalidation failed for account %s profile %s",
                account_id,
                profile_id,
            )

    def _notify_achievements(
        self, profile_id: int, changes: Sequence[StatusChange]
    ) -> None:
        if self._achievements is None or not changes:
            return
        task = asyncio.create_task(
            _run_achievement_hook(self._achievements, profile_id, list(changes))
        )
        self._hook_tasks.add(task)
        task.add_done_callback(self._hook_tasks.discard)


async def _run_achievement_hook(
    hook: AchievementHook, profile_id: int, changes: list[StatusChange]
) -> None:
    try:
        await hook.on_status_changes(profile_id, changes)
    except Exception:
        logger.exception("Achievement hook failed for profile %s", profile_id)
