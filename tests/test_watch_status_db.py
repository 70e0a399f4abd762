"""Transactional cascade tests against a temporary SQLite database."""

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from watchstatus.database import Database
from watchstatus.errors import DatabaseError, InvalidStatusError, NotFoundError
from watchstatus.models import WatchStatus
from watchstatus.services.watch_status_db import WatchStatusDbService


def test_episode_update_propagates_to_season_and_show(database, library) -> None:
    async def runner() -> None:
        await database.create_all()
        profile_id = await library.add_profile()
        show = await library.add_show(profile_id, [(2, 0)])
        first, second = show.episode_ids[0]
        service = WatchStatusDbService(database, clock=library.clock)

        result = await service.update_episode_watch_status(
            profile_id, first, WatchStatus.WATCHED
        )

        assert result.success is True
        assert result.affected_rows == 3
        assert [(c.entity_type, c.to_status) for c in result.changes] == [
            ("episode", WatchStatus.WATCHED),
            ("season", WatchStatus.WATCHING),
            ("show", WatchStatus.WATCHING),
        ]

        result = await service.update_episode_watch_status(profile_id, second, "watched")

        assert [(c.entity_type, c.to_status) for c in result.changes] == [
            ("episode", WatchStatus.WATCHED),
            ("season", WatchStatus.WATCHED),
            ("show", WatchStatus.WATCHED),
        ]
        assert await library.status_of("show", profile_id, show.show_id) is (
            WatchStatus.WATCHED
        )

        await database.dispose()

    asyncio.run(runner())


def test_episode_update_stops_when_season_unchanged(database, library) -> None:
    async def runner() -> None:
        await database.create_all()
        profile_id = await library.add_profile()
        show = await library.add_show(profile_id, [(3, 0)])
        first, second, _ = show.episode_ids[0]
        service = WatchStatusDbService(database, clock=library.clock)

        await service.update_episode_watch_status(profile_id, first, WatchStatus.WATCHED)
        result = await service.update_episode_watch_status(
            profile_id, second, WatchStatus.WATCHED
        )

        assert result.success is True
        assert result.affected_rows == 1
        assert [change.entity_type for change in result.changes] == ["episode"]
        assert result.changes[0].from_status is WatchStatus.NOT_WATCHED
        assert await library.status_of("season", profile_id, show.season_ids[0]) is (
            WatchStatus.WATCHING
        )

        await database.dispose()

    asyncio.run(runner())


def test_unwatching_an_episode_reopens_the_season(database, library) -> None:
    async def runner() -> None:
        await database.create_all()
        profile_id = await library.add_profile()
        show = await library.add_show(profile_id, [(2, 0)])
        service = WatchStatusDbService(database, clock=library.clock)
        await service.update_show_watch_status(profile_id, show.show_id, "WATCHED")

        result = await service.update_episode_watch_status(
            profile_id, show.episode_ids[0][0], WatchStatus.NOT_WATCHED
        )

        assert [(c.entity_type, c.to_status) for c in result.changes] == [
            ("episode", WatchStatus.NOT_WATCHED),
            ("season", WatchStatus.WATCHING),
            ("show", WatchStatus.WATCHING),
        ]

        await database.dispose()

    asyncio.run(runner())


def test_show_watched_rewrites_every_season_and_episode(database, library) -> None:
    async def runner() -> None:
        await database.create_all()
        profile_id = await library.add_profile()
        show = await library.add_show(profile_id, [(5, 0), (5, 0)])
        service = WatchStatusDbService(database, clock=library.clock)

        result = await service.update_show_watch_status(
            profile_id, show.show_id, WatchStatus.WATCHED
        )

        assert result.success is True
        assert result.affected_rows == 13
        assert len(result.changes) == 13
        entity_types = [change.entity_type for change in result.changes]
        assert entity_types == ["show"] + ["season"] * 2 + ["episode"] * 10
        assert all(change.to_status is WatchStatus.WATCHED for change in result.changes)
        for episode_id in show.all_episode_ids:
            assert await library.status_of("episode", profile_id, episode_id) is (
                WatchStatus.WATCHED
            )

        await database.dispose()

    asyncio.run(runner())


def test_season_up_to_date_leaves_future_episodes_unwatched(database, library) -> None:
    async def runner() -> None:
        await database.create_all()
        profile_id = await library.add_profile()
        show = await library.add_show(profile_id, [(3, 2)])
        season_id = show.season_ids[0]
        service = WatchStatusDbService(database, clock=library.clock)

        result = await service.update_season_watch_status(
            profile_id, season_id, WatchStatus.UP_TO_DATE
        )

        assert result.success is True
        assert result.affected_rows == 7
        assert [c.entity_type for c in result.changes[:2]] == ["show", "season"]
        episode_statuses = [
            await library.status_of("episode", profile_id, episode_id)
            for episode_id in show.episode_ids[0]
        ]
        assert episode_statuses == [WatchStatus.WATCHED] * 3 + [WatchStatus.NOT_WATCHED] * 2
        assert await library.status_of("season", profile_id, season_id) is (
            WatchStatus.UP_TO_DATE
        )
        assert await library.status_of("show", profile_id, show.show_id) is (
            WatchStatus.UP_TO_DATE
        )

        await database.dispose()

    asyncio.run(runner())


def test_season_marked_watched_with_future_episodes_is_up_to_date(
    database, library
) -> None:
    async def runner() -> None:
        await database.create_all()
        profile_id = await library.add_profile()
        show = await library.add_show(profile_id, [(2, 1)])
        season_id = show.season_ids[0]
        service = WatchStatusDbService(database, clock=library.clock)

        result = await service.update_season_watch_status(
            profile_id, season_id, WatchStatus.WATCHED
        )

        assert len(result.changes_for("episode")) == 3
        assert await library.status_of("season", profile_id, season_id) is (
            WatchStatus.UP_TO_DATE
        )

        await database.dispose()

    asyncio.run(runner())


def test_season_not_watched_target_keeps_episodes(database, library) -> None:
    async def runner() -> None:
        await database.create_all()
        profile_id = await library.add_profile()
        show = await library.add_show(profile_id, [(2, 0)])
        season_id = show.season_ids[0]
        service = WatchStatusDbService(database, clock=library.clock)
        await service.update_season_watch_status(profile_id, season_id, "WATCHED")

        result = await service.update_season_watch_status(
            profile_id, season_id, WatchStatus.NOT_WATCHED
        )

        assert result.changes_for("episode") == []
        assert result.changes_for("season")[0].to_status is WatchStatus.NOT_WATCHED
        for episode_id in show.episode_ids[0]:
            assert await library.status_of("episode", profile_id, episode_id) is (
                WatchStatus.WATCHED
            )

        await database.dispose()

    asyncio.run(runner())


def test_check_and_update_show_is_idempotent(database, library) -> None:
    async def runner() -> None:
        await database.create_all()
        profile_id = await library.add_profile()
        show = await library.add_show(profile_id, [(2, 0)])
        await library.set_status("show", profile_id, show.show_id, WatchStatus.WATCHED)
        service = WatchStatusDbService(database, clock=library.clock)

        first = await service.check_and_update_show_watch_status(profile_id, show.show_id)
        second = await service.check_and_update_show_watch_status(profile_id, show.show_id)

        assert [(c.entity_type, c.to_status) for c in first.changes] == [
            ("show", WatchStatus.NOT_WATCHED)
        ]
        assert first.changes[0].reason == "Show status recalculated"
        assert second.success is True
        assert second.changes == []
        assert second.affected_rows == 0

        await database.dispose()

    asyncio.run(runner())


def test_check_and_update_season_repairs_drift(database, library) -> None:
    async def runner() -> None:
        await database.create_all()
        profile_id = await library.add_profile()
        show = await library.add_show(profile_id, [(2, 0), (1, 0)])
        season_id = show.season_ids[0]
        await library.set_status("season", profile_id, season_id, WatchStatus.WATCHED)
        service = WatchStatusDbService(database, clock=library.clock)

        result = await service.check_and_update_season_watch_status(profile_id, season_id)

        assert [(c.entity_type, c.to_status) for c in result.changes] == [
            ("season", WatchStatus.NOT_WATCHED)
        ]
        again = await service.check_and_update_season_watch_status(profile_id, season_id)
        assert again.changes == []

        await database.dispose()

    asyncio.run(runner())


@pytest.mark.parametrize(
    "layout",
    [
        pytest.param([(2, 0), (0, 0)], id="empty-season"),
        pytest.param([(2, 0), (0, 2)], id="future-only-season"),
    ],
)
def test_unstarted_show_with_pending_season_stays_not_watched(
    database, library, layout
) -> None:
    async def runner() -> None:
        await database.create_all()
        profile_id = await library.add_profile()
        show = await library.add_show(profile_id, layout)
        service = WatchStatusDbService(database, clock=library.clock)

        result = await service.check_and_update_show_watch_status(
            profile_id, show.show_id
        )

        assert result.success is True
        assert result.changes_for("show") == []
        assert await library.status_of("show", profile_id, show.show_id) is (
            WatchStatus.NOT_WATCHED
        )
        assert await library.status_of("season", profile_id, show.season_ids[1]) is (
            WatchStatus.UP_TO_DATE
        )

        await database.dispose()

    asyncio.run(runner())


def test_finishing_aired_seasons_with_pending_season_is_up_to_date(
    database, library
) -> None:
    async def runner() -> None:
        await database.create_all()
        profile_id = await library.add_profile()
        show = await library.add_show(profile_id, [(1, 0), (0, 2)])
        service = WatchStatusDbService(database, clock=library.clock)

        result = await service.update_episode_watch_status(
            profile_id, show.episode_ids[0][0], WatchStatus.WATCHED
        )

        assert [(c.entity_type, c.to_status) for c in result.changes_for("show")] == [
            ("show", WatchStatus.UP_TO_DATE)
        ]

        await database.dispose()

    asyncio.run(runner())


def test_season_up_to_date_marks_undated_episodes_watched(database, library) -> None:
    async def runner() -> None:
        await database.create_all()
        profile_id = await library.add_profile()
        show = await library.add_show(profile_id, [(1, 1, 1)])
        season_id = show.season_ids[0]
        service = WatchStatusDbService(database, clock=library.clock)

        result = await service.update_season_watch_status(
            profile_id, season_id, WatchStatus.UP_TO_DATE
        )

        assert result.success is True
        episode_statuses = [
            await library.status_of("episode", profile_id, episode_id)
            for episode_id in show.episode_ids[0]
        ]
        assert episode_statuses == [
            WatchStatus.WATCHED,
            WatchStatus.NOT_WATCHED,
            WatchStatus.WATCHED,
        ]
        assert await library.status_of("season", profile_id, season_id) is (
            WatchStatus.UP_TO_DATE
        )

        await database.dispose()

    asyncio.run(runner())


def test_unchanged_season_leaves_show_row_alone(database, library) -> None:
    async def runner() -> None:
        await database.create_all()
        profile_id = await library.add_profile()
        show = await library.add_show(profile_id, [(2, 0), (1, 0)])
        season_id = show.season_ids[0]
        service = WatchStatusDbService(database, clock=library.clock)
        await service.update_season_watch_status(profile_id, season_id, "WATCHED")
        await library.set_status(
            "show", profile_id, show.show_id, WatchStatus.NOT_WATCHED
        )

        result = await service.update_season_watch_status(
            profile_id, season_id, WatchStatus.WATCHED
        )

        assert result.success is True
        assert result.changes_for("show") == []
        assert result.affected_rows == 3
        assert await library.status_of("show", profile_id, show.show_id) is (
            WatchStatus.NOT_WATCHED
        )

        await database.dispose()

    asyncio.run(runner())


def test_new_content_only_reopens_watched_shows(database, library) -> None:
    async def runner() -> None:
        await database.create_all()
        profile_id = await library.add_profile()
        watched = await library.add_show(profile_id, [(1, 0)], title="Finished")
        current = await library.add_show(profile_id, [(1, 0)], title="Current")
        fresh = await library.add_show(profile_id, [(1, 0)], title="Fresh")
        await library.set_status("show", profile_id, watched.show_id, WatchStatus.WATCHED)
        await library.set_status(
            "show", profile_id, current.show_id, WatchStatus.UP_TO_DATE
        )
        service = WatchStatusDbService(database, clock=library.clock)

        result = await service.update_show_watch_status_for_new_content(
            profile_id,
            [watched.show_id, current.show_id, fresh.show_id, watched.show_id],
        )

        assert result.success is True
        assert [(c.entity_id, c.from_status, c.to_status) for c in result.changes] == [
            (watched.show_id, WatchStatus.WATCHED, WatchStatus.WATCHING)
        ]
        assert result.changes[0].reason == "New content available"
        assert await library.status_of("show", profile_id, current.show_id) is (
            WatchStatus.UP_TO_DATE
        )
        assert await library.status_of("show", profile_id, fresh.show_id) is (
            WatchStatus.NOT_WATCHED
        )

        empty = await service.update_show_watch_status_for_new_content(profile_id, [])
        assert empty.success is True
        assert empty.changes == []

        await database.dispose()

    asyncio.run(runner())


def test_unknown_ids_and_statuses_are_rejected(database, library) -> None:
    async def runner() -> None:
        await database.create_all()
        profile_id = await library.add_profile()
        show = await library.add_show(profile_id, [(1, 0)])
        service = WatchStatusDbService(database, clock=library.clock)

        with pytest.raises(NotFoundError, match="Episode 999 not found"):
            await service.update_episode_watch_status(profile_id, 999, "WATCHED")
        with pytest.raises(NotFoundError, match="Season 999 not found"):
            await service.update_season_watch_status(profile_id, 999, "WATCHED")
        with pytest.raises(NotFoundError, match="Show 999 not found"):
            await service.check_and_update_show_watch_status(profile_id, 999)
        with pytest.raises(InvalidStatusError):
            await service.update_episode_watch_status(
                profile_id, show.episode_ids[0][0], WatchStatus.WATCHING
            )
        with pytest.raises(InvalidStatusError, match="Unknown watch status"):
            await service.update_show_watch_status(profile_id, show.show_id, "BINGED")

        assert await library.status_of("show", profile_id, show.show_id) is (
            WatchStatus.NOT_WATCHED
        )

        await database.dispose()

    asyncio.run(runner())


def test_missing_status_row_rolls_back_the_cascade(database, library) -> None:
    async def runner() -> None:
        await database.create_all()
        profile_id = await library.add_profile()
        show = await library.add_show(profile_id, [(2, 0)])
        await library.forget("show", profile_id, show.show_id)
        service = WatchStatusDbService(database, clock=library.clock)
        episode_id = show.episode_ids[0][0]

        result = await service.update_episode_watch_status(
            profile_id, episode_id, WatchStatus.WATCHED
        )

        assert result.success is False
        assert result.changes == []
        assert "No show watch status row" in result.message
        assert await library.status_of("episode", profile_id, episode_id) is (
            WatchStatus.NOT_WATCHED
        )
        assert await library.status_of("season", profile_id, show.season_ids[0]) is (
            WatchStatus.NOT_WATCHED
        )

        await database.dispose()

    asyncio.run(runner())


def test_movie_status_updates_and_release_recheck(database, library) -> None:
    async def runner() -> None:
        await database.create_all()
        profile_id = await library.add_profile()
        released = await library.add_movie(profile_id)
        upcoming = await library.add_movie(
            profile_id, title="Sequel", release_date=date(2024, 12, 1)
        )
        service = WatchStatusDbService(database, clock=library.clock)

        result = await service.update_movie_watch_status(profile_id, released, "WATCHED")
        assert [(c.entity_type, c.to_status) for c in result.changes] == [
            ("movie", WatchStatus.WATCHED)
        ]
        repeat = await service.update_movie_watch_status(profile_id, released, "WATCHED")
        assert repeat.changes == []
        assert repeat.affected_rows == 1

        with pytest.raises(InvalidStatusError):
            await service.update_movie_watch_status(
                profile_id, released, WatchStatus.UP_TO_DATE
            )

        unchanged = await service.check_and_update_movie_watch_status(profile_id, upcoming)
        assert unchanged.changes == []

        later = WatchStatusDbService(database, clock=lambda: date(2025, 1, 1))
        released_now = await later.check_and_update_movie_watch_status(
            profile_id, upcoming
        )
        assert [(c.from_status, c.to_status) for c in released_now.changes] == [
            (WatchStatus.UNAIRED, WatchStatus.NOT_WATCHED)
        ]

        await database.dispose()

    asyncio.run(runner())


def test_list_profile_shows_orders_by_title(database, library) -> None:
    async def runner() -> None:
        await database.create_all()
        profile_id = await library.add_profile()
        other_profile = await library.add_profile(name="Guest")
        await library.add_show(profile_id, [(1, 0)], title="Zeta")
        await library.add_show(profile_id, [(1, 0)], title="Alpha")
        await library.add_show(other_profile, [(1, 0)], title="Hidden")
        service = WatchStatusDbService(database, clock=library.clock)

        entries = await service.list_profile_shows(profile_id)

        assert [entry.title for entry in entries] == ["Alpha", "Zeta"]
        assert all(entry.status is WatchStatus.NOT_WATCHED for entry in entries)

        await database.dispose()

    asyncio.run(runner())


def test_infrastructure_errors_become_database_errors(tmp_path) -> None:
    async def runner() -> None:
        # Tables are never created, so every statement fails.
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
        service = WatchStatusDbService(database)

        with pytest.raises(DatabaseError, match="updating episode watch status"):
            await service.update_episode_watch_status(1, 1, "WATCHED")

        await database.dispose()

    asyncio.run(runner())
