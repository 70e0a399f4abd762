"""Entry point for the FastAPI-powered watch status service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from .config import settings
from .database import Database
from .errors import (
    DatabaseError,
    InvalidStatusError,
    NoAffectedRowsError,
    NotFoundError,
    StatusUpdateError,
    WatchStatusError,
)
from .models import NewContentRequest, StatusUpdateResult, WatchStatusUpdate
from .services.achievements import MilestoneRecorder
from .services.cache import ProfileContentCache
from .services.favorites import FavoritesService
from .services.watch_status import WatchStatusService
from .services.watch_status_db import WatchStatusDbService

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

PROFILE_PREFIX = "/accounts/{account_id}/profiles/{profile_id}"
SHOWS_VIEW = "shows"

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    database = Database(settings.database_url)
    await database.create_all()

    cache = ProfileContentCache(
        settings.profile_cache_seconds,
        max_entries=settings.profile_cache_max_entries,
    )
    db_service = WatchStatusDbService(database)
    achievements = None
    if settings.achievements_enabled:
        achievements = MilestoneRecorder(
            database,
            episode_milestones=settings.episode_milestones,
            movie_milestones=settings.movie_milestones,
        )
    watch_status = WatchStatusService(db_service, cache, achievements)

    fastapi_app.state.database = database
    fastapi_app.state.cache = cache
    fastapi_app.state.watch_status_db = db_service
    fastapi_app.state.watch_status = watch_status
    fastapi_app.state.favorites = FavoritesService(database, cache)

    try:
        yield
    finally:
        await watch_status.aclose()
        await database.dispose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Per-profile watch status tracking for shows and movies",
        version="1.0.0",
        lifespan=lifespan,
    )
    register_routes(fastapi_app)
    return fastapi_app


def get_watch_status_service(fastapi_app: FastAPI) -> WatchStatusService:
    service = getattr(fastapi_app.state, "watch_status", None)
    if not isinstance(service, WatchStatusService):
        raise RuntimeError("Watch status service not initialised")
    return service


def get_favorites_service(fastapi_app: FastAPI) -> FavoritesService:
    service = getattr(fastapi_app.state, "favorites", None)
    if not isinstance(service, FavoritesService):
        raise RuntimeError("Favorites service not initialised")
    return service


def to_http_exception(exc: WatchStatusError) -> HTTPException:
    """Translate a domain error into the HTTP status the API reports."""

    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, InvalidStatusError):
        status_code = 400
    elif isinstance(exc, (StatusUpdateError, NoAffectedRowsError)):
        status_code = 409
    else:
        status_code = 500
    if isinstance(exc, DatabaseError):
        logger.error("Request failed: %s", exc)
        return HTTPException(status_code=status_code, detail="Database error")
    return HTTPException(status_code=status_code, detail=exc.message)


def _result_response(result: StatusUpdateResult) -> JSONResponse:
    return JSONResponse(result.to_payload())


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/health")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.put(PROFILE_PREFIX + "/episodes/{episode_id}/watch-status")
    async def update_episode(
        account_id: int, profile_id: int, episode_id: int, body: WatchStatusUpdate
    ) -> JSONResponse:
        service = get_watch_status_service(fastapi_app)
        try:
            result = await service.update_episode_watch_status(
                account_id, profile_id, episode_id, body.status
            )
        except WatchStatusError as exc:
            raise to_http_exception(exc) from exc
        return _result_response(result)

    @fastapi_app.put(PROFILE_PREFIX + "/seasons/{season_id}/watch-status")
    async def update_season(
        account_id: int, profile_id: int, season_id: int, body: WatchStatusUpdate
    ) -> JSONResponse:
        service = get_watch_status_service(fastapi_app)
        try:
            result = await service.update_season_watch_status(
                account_id, profile_id, season_id, body.status
            )
        except WatchStatusError as exc:
            raise to_http_exception(exc) from exc
        return _result_response(result)

    @fastapi_app.put(PROFILE_PREFIX + "/shows/{show_id}/watch-status")
    async def update_show(
        account_id: int, profile_id: int, show_id: int, body: WatchStatusUpdate
    ) -> JSONResponse:
        service = get_watch_status_service(fastapi_app)
        try:
            result = await service.update_show_watch_status(
                account_id, profile_id, show_id, body.status
            )
        except WatchStatusError as exc:
            raise to_http_exception(exc) from exc
        return _result_response(result)

    @fastapi_app.put(PROFILE_PREFIX + "/movies/{movie_id}/watch-status")
    async def update_movie(
        account_id: int, profile_id: int, movie_id: int, body: WatchStatusUpdate
    ) -> JSONResponse:
        service = get_watch_status_service(fastapi_app)
        try:
            result = await service.update_movie_watch_status(
                account_id, profile_id, movie_id, body.status
            )
        except WatchStatusError as exc:
            raise to_http_exception(exc) from exc
        return _result_response(result)

    @fastapi_app.post(PROFILE_PREFIX + "/shows/{show_id}/watch-status/check")
    async def check_show(account_id: int, profile_id: int, show_id: int) -> JSONResponse:
        service = get_watch_status_service(fastapi_app)
        try:
            result = await service.check_and_update_show_status(
                account_id, profile_id, show_id
            )
        except WatchStatusError as exc:
            raise to_http_exception(exc) from exc
        return _result_response(result)

    @fastapi_app.post(PROFILE_PREFIX + "/seasons/{season_id}/watch-status/check")
    async def check_season(
        account_id: int, profile_id: int, season_id: int
    ) -> JSONResponse:
        service = get_watch_status_service(fastapi_app)
        try:
            result = await service.check_and_update_season_status(
                account_id, profile_id, season_id
            )
        except WatchStatusError as exc:
            raise to_http_exception(exc) from exc
        return _result_response(result)

    @fastapi_app.post(PROFILE_PREFIX + "/movies/{movie_id}/watch-status/check")
    async def check_movie(
        account_id: int, profile_id: int, movie_id: int
    ) -> JSONResponse:
        service = get_watch_status_service(fastapi_app)
        try:
            result = await service.check_and_update_movie_status(
                account_id, profile_id, movie_id
            )
        except WatchStatusError as exc:
            raise to_http_exception(exc) from exc
        return _result_response(result)

    @fastapi_app.post(PROFILE_PREFIX + "/shows/new-content", status_code=204)
    async def new_content(
        account_id: int, profile_id: int, body: NewContentRequest
    ) -> None:
        service = get_watch_status_service(fastapi_app)
        try:
            await service.update_show_watch_status_for_new_content(
                account_id, profile_id, body.show_ids
            )
        except WatchStatusError as exc:
            raise to_http_exception(exc) from exc

    @fastapi_app.post(PROFILE_PREFIX + "/shows/{show_id}/favorite")
    async def favorite_show(
        account_id: int, profile_id: int, show_id: int
    ) -> dict[str, Any]:
        favorites = get_favorites_service(fastapi_app)
        try:
            created = await favorites.save_show_favorite(account_id, profile_id, show_id)
        except WatchStatusError as exc:
            raise to_http_exception(exc) from exc
        return {"showId": show_id, "created": created}

    @fastapi_app.post(PROFILE_PREFIX + "/movies/{movie_id}/favorite")
    async def favorite_movie(
        account_id: int, profile_id: int, movie_id: int
    ) -> dict[str, Any]:
        favorites = get_favorites_service(fastapi_app)
        try:
            created = await favorites.save_movie_favorite(
                account_id, profile_id, movie_id
            )
        except WatchStatusError as exc:
            raise to_http_exception(exc) from exc
        return {"movieId": movie_id, "created": created}

    @fastapi_app.get(PROFILE_PREFIX + "/shows")
    async def profile_shows(account_id: int, profile_id: int) -> JSONResponse:
        cache: ProfileContentCache = fastapi_app.state.cache
        payload = cache.get(account_id, profile_id, SHOWS_VIEW)
        if payload is None:
            db_service: WatchStatusDbService = fastapi_app.state.watch_status_db
            try:
                entries = await db_service.list_profile_shows(profile_id)
            except WatchStatusError as exc:
                raise to_http_exception(exc) from exc
            payload = {
                "shows": [
                    entry.model_dump(mode="json", by_alias=True) for entry in entries
                ]
            }
            cache.set(account_id, profile_id, SHOWS_VIEW, payload)
        return JSONResponse(payload)


app = create_app()
