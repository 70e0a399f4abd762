"""Pure derivation rules turning child state into a parent status."""

from __future__ import annotations

from datetime import date
from typing import Iterable

from .models import SeasonEpisodeCounts, WatchStatus

_COMPLETE = frozenset({WatchStatus.WATCHED, WatchStatus.UP_TO_DATE})


def has_aired(air_date: date | None, today: date) -> bool:
    """Return whether content with ``air_date`` is available on ``today``.

    Content without an air date is treated as aired.
    """

    return air_date is None or air_date <= today


def calculate_season_status(counts: SeasonEpisodeCounts) -> WatchStatus:
    """Derive a season status from its episode aggregate.

    * no episodes at all: ``UP_TO_DATE``
    * every aired episode watched: ``WATCHED``, or ``UP_TO_DATE`` while
      future episodes remain
    * aired episodes exist but none is watched: ``NOT_WATCHED``
    * anything else: ``WATCHING``
    """

    if counts.total_episodes == 0:
        return WatchStatus.UP_TO_DATE

    if counts.watched_aired_episodes == counts.aired_episodes:
        if counts.future_episodes == 0:
            return WatchStatus.WATCHED
        return WatchStatus.UP_TO_DATE

    if counts.watched_aired_episodes == 0:
        return WatchStatus.NOT_WATCHED

    return WatchStatus.WATCHING


def calculate_show_status(
    seasons: Iterable[tuple[WatchStatus, int]],
) -> WatchStatus:
    """Derive a show status from ``(season status, aired episodes)`` pairs.

    Seasons without an aired episode, and ``UNAIRED`` seasons, have nothing
    to watch yet. They are pending: they never move a show into
    ``WATCHING`` and keep a fully watched show at ``UP_TO_DATE`` rather than
    ``WATCHED``.
    """

    seasons = list(seasons)
    if not seasons:
        return WatchStatus.UP_TO_DATE

    available = [
        status
        for status, aired_episodes in seasons
        if aired_episodes > 0 and status is not WatchStatus.UNAIRED
    ]
    pending = len(seasons) - len(available)
    if not available:
        return WatchStatus.UNAIRED

    if WatchStatus.WATCHING in available:
        return WatchStatus.WATCHING

    if all(status is WatchStatus.WATCHED for status in available):
        return WatchStatus.WATCHED if pending == 0 else WatchStatus.UP_TO_DATE

    if all(status in _COMPLETE for status in available):
        return WatchStatus.UP_TO_DATE

    if all(status is WatchStatus.NOT_WATCHED for status in available):
        return WatchStatus.NOT_WATCHED

    # Some seasons finished, others not started.
    return WatchStatus.WATCHING


def initial_status(air_date: date | None, today: date) -> WatchStatus:
    """Status given to content when a profile starts tracking it."""

    return WatchStatus.NOT_WATCHED if has_aired(air_date, today) else WatchStatus.UNAIRED


def calculate_movie_status(
    current: WatchStatus, release_date: date | None, today: date
) -> WatchStatus:
    """Keep a movie's availability status in line with its release date."""

    if current is WatchStatus.WATCHED:
        return current
    if has_aired(release_date, today):
        return WatchStatus.NOT_WATCHED
    return WatchStatus.UNAIRED


def rewrites_descendants(target: WatchStatus) -> bool:
    """Whether setting an ancestor to ``target`` rewrites its episodes."""

    return target in _COMPLETE


def rewrite_episode_status(
    target: WatchStatus, air_date: date | None, today: date
) -> WatchStatus | None:
    """Status an episode receives when an ancestor is set to ``target``.

    ``None`` means the ancestor action leaves episodes alone.
    """

    if target is WatchStatus.WATCHED:
        return WatchStatus.WATCHED
    if target is WatchStatus.UP_TO_DATE:
        if has_aired(air_date, today):
            return WatchStatus.WATCHED
        return WatchStatus.NOT_WATCHED
    return None


def count_season_episodes(
    episodes: Iterable[tuple[date | None, WatchStatus]], today: date
) -> SeasonEpisodeCounts:
    """Build the season aggregate from ``(air_date, status)`` pairs."""

    total = aired = watched_aired = 0
    for air_date, status in episodes:
        total += 1
        if has_aired(air_date, today):
            aired += 1
            if status is WatchStatus.WATCHED:
                watched_aired += 1
    return SeasonEpisodeCounts(
        total_episodes=total,
        aired_episodes=aired,
        future_episodes=total - aired,
        watched_aired_episodes=watched_aired,
    )
