"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Sequence

import pytest


# Ensure the application packages are importable when running tests without an
# editable install. This mirrors the expected runtime layout where
# ``watchstatus`` sits at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy import delete, select, update  # noqa: E402

from watchstatus.database import Database  # noqa: E402
from watchstatus.db_models import (  # noqa: E402
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
from watchstatus.models import WatchStatus  # noqa: E402
from watchstatus.status_calculator import initial_status  # noqa: E402

TODAY = date(2024, 6, 1)
AIRED = date(2024, 1, 15)
UPCOMING = date(2024, 12, 1)

_STATUS_MODELS = {
    "show": (ShowWatchStatus, ShowWatchStatus.show_id),
    "season": (SeasonWatchStatus, SeasonWatchStatus.season_id),
    "episode": (EpisodeWatchStatus, EpisodeWatchStatus.episode_id),
    "movie": (MovieWatchStatus, MovieWatchStatus.movie_id),
}


@dataclass
class SeededShow:
    show_id: int
    season_ids: list[int] = field(default_factory=list)
    episode_ids: list[list[int]] = field(default_factory=list)

    @property
    def all_episode_ids(self) -> list[int]:
        return [episode_id for season in self.episode_ids for episode_id in season]


class LibraryBuilder:
    """Seeds content and status rows for a test database."""

    today = TODAY

    def __init__(self, database: Database):
        self.database = database

    def clock(self) -> date:
        return self.today

    async def add_profile(self, account_id: int = 1, name: str = "Main") -> int:
        async with self.database.transaction() as session:
            profile = Profile(account_id=account_id, name=name)
            session.add(profile)
            await session.flush()
            return profile.id

    async def add_show(
        self,
        profile_id: int | None,
        seasons: Sequence[tuple[int, ...]],
        *,
        title: str = "Test Show",
    ) -> SeededShow:
        """Create a show whose seasons hold ``(aired, upcoming[, undated])`` episodes.

        With a ``profile_id`` every row is tracked with its initial status.
        """

        async with self.database.transaction() as session:
            show = Show(title=title, air_date=AIRED, in_production=True)
            session.add(show)
            await session.flush()
            seeded = SeededShow(show_id=show.id)
            rows: list[object] = []
            if profile_id is not None:
                rows.append(
                    ShowWatchStatus(
                        profile_id=profile_id,
                        show_id=show.id,
                        status=initial_status(show.air_date, TODAY).value,
                    )
                )

            for number, counts in enumerate(seasons, start=1):
                aired, upcoming, undated = (*counts, 0)[:3]
                season = Season(
                    show_id=show.id,
                    season_number=number,
                    name=f"Season {number}",
                    air_date=AIRED if aired or undated else UPCOMING,
                )
                session.add(season)
                await session.flush()
                seeded.season_ids.append(season.id)
                if profile_id is not None:
                    rows.append(
                        SeasonWatchStatus(
                            profile_id=profile_id,
                            season_id=season.id,
                            status=initial_status(season.air_date, TODAY).value,
                        )
                    )

                episode_ids: list[int] = []
                air_dates: list[date | None] = (
                    [AIRED] * aired + [UPCOMING] * upcoming + [None] * undated
                )
                for episode_number, air_date in enumerate(air_dates, start=1):
                    episode = Episode(
                        show_id=show.id,
                        season_id=season.id,
                        episode_number=episode_number,
                        title=f"Episode {episode_number}",
                        air_date=air_date,
                    )
                    session.add(episode)
                    await session.flush()
                    episode_ids.append(episode.id)
                    if profile_id is not None:
                        rows.append(
                            EpisodeWatchStatus(
                                profile_id=profile_id,
                                episode_id=episode.id,
                                status=initial_status(air_date, TODAY).value,
                            )
                        )
                seeded.episode_ids.append(episode_ids)

            session.add_all(rows)
        return seeded

    async def add_movie(
        self,
        profile_id: int | None,
        *,
        title: str = "Test Movie",
        release_date: date | None = AIRED,
    ) -> int:
        async with self.database.transaction() as session:
            movie = Movie(title=title, release_date=release_date)
            session.add(movie)
            await session.flush()
            if profile_id is not None:
                session.add(
                    MovieWatchStatus(
                        profile_id=profile_id,
                        movie_id=movie.id,
                        status=initial_status(release_date, TODAY).value,
                    )
                )
            return movie.id

    async def set_status(
        self, entity_type: str, profile_id: int, entity_id: int, status: WatchStatus
    ) -> None:
        model, key_column = _STATUS_MODELS[entity_type]
        async with self.database.transaction() as session:
            await session.execute(
                update(model)
                .where(model.profile_id == profile_id, key_column == entity_id)
                .values(status=status.value)
                .execution_options(synchronize_session=False)
            )

    async def forget(self, entity_type: str, profile_id: int, entity_id: int) -> None:
        model, key_column = _STATUS_MODELS[entity_type]
        async with self.database.transaction() as session:
            await session.execute(
                delete(model)
                .where(model.profile_id == profile_id, key_column == entity_id)
                .execution_options(synchronize_session=False)
            )

    async def status_of(
        self, entity_type: str, profile_id: int, entity_id: int
    ) -> WatchStatus | None:
        model, key_column = _STATUS_MODELS[entity_type]
        async with self.database.session() as session:
            value = await session.scalar(
                select(model.status).where(
                    model.profile_id == profile_id, key_column == entity_id
                )
            )
        return WatchStatus(value) if value is not None else None


@pytest.fixture
def database(tmp_path) -> Database:
    return Database(f"sqlite+aiosqlite:///{tmp_path / 'watchstatus.db'}")


@pytest.fixture
def library(database: Database) -> LibraryBuilder:
    return LibraryBuilder(database)
