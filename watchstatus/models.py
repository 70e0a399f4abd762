"""Watch status vocabulary and the payloads exchanged by the services."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import InvalidStatusError


class WatchStatus(str, Enum):
    """Every status a tracked entity may hold."""

    UNAIRED = "UNAIRED"
    NOT_WATCHED = "NOT_WATCHED"
    WATCHING = "WATCHING"
    WATCHED = "WATCHED"
    UP_TO_DATE = "UP_TO_DATE"

    def __str__(self) -> str:
        return self.value


EntityType = Literal["show", "season", "episode", "movie"]

# Rendering order for change summaries.
ENTITY_ORDER: tuple[EntityType, ...] = ("show", "season", "episode", "movie")

# Episodes and movies are atomic: they are either watched or not.
EPISODE_STATUSES: frozenset[WatchStatus] = frozenset(
    {WatchStatus.UNAIRED, WatchStatus.NOT_WATCHED, WatchStatus.WATCHED}
)
MOVIE_STATUSES: frozenset[WatchStatus] = EPISODE_STATUSES
SEASON_STATUSES: frozenset[WatchStatus] = frozenset(WatchStatus)
SHOW_STATUSES: frozenset[WatchStatus] = frozenset(WatchStatus)

ALLOWED_STATUSES: dict[EntityType, frozenset[WatchStatus]] = {
    "show": SHOW_STATUSES,
    "season": SEASON_STATUSES,
    "episode": EPISODE_STATUSES,
    "movie": MOVIE_STATUSES,
}


def coerce_status(value: object, entity_type: EntityType) -> WatchStatus:
    """Return ``value`` as a status the given entity kind may hold.

    Raises :class:`InvalidStatusError` for unknown values and for statuses the
    entity kind cannot take (for example ``WATCHING`` on an episode).
    """

    try:
        status = WatchStatus(str(value).strip().upper())
    except ValueError as exc:
        raise InvalidStatusError(f"Unknown watch status: {value!r}") from exc
    if status not in ALLOWED_STATUSES[entity_type]:
        raise InvalidStatusError(
            f"Status {status.value} is not valid for a {entity_type}"
        )
    return status


def stored_status(value: str | None) -> WatchStatus:
    """Map a persisted status column to the enum, tolerating legacy values."""

    if value is None:
        return WatchStatus.NOT_WATCHED
    try:
        return WatchStatus(value)
    except ValueError:
        return WatchStatus.NOT_WATCHED


class StatusChange(BaseModel):
    """A single row transition produced by a cascade."""

    model_config = ConfigDict(populate_by_name=True)

    entity_type: EntityType = Field(serialization_alias="entityType")
    entity_id: int = Field(serialization_alias="entityId")
    from_status: WatchStatus = Field(serialization_alias="from")
    to_status: WatchStatus = Field(serialization_alias="to")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    reason: str


class StatusUpdateResult(BaseModel):
    """Outcome of a cascade, as returned to the boundary layer."""

    success: bool
    changes: list[StatusChange] = Field(default_factory=list)
    affected_rows: int = Field(default=0, serialization_alias="affectedRows")
    message: str = ""

    def changes_for(self, entity_type: EntityType) -> list[StatusChange]:
        return [change for change in self.changes if change.entity_type == entity_type]

    def to_payload(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


class SeasonEpisodeCounts(BaseModel):
    """Aggregate episode counts for one season and one profile.

    ``aired_episodes`` includes episodes without an air date.
    """

    model_config = ConfigDict(frozen=True)

    total_episodes: int = Field(ge=0)
    aired_episodes: int = Field(ge=0)
    future_episodes: int = Field(ge=0)
    watched_aired_episodes: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_consistency(self) -> "SeasonEpisodeCounts":
        if self.aired_episodes + self.future_episodes != self.total_episodes:
            raise ValueError("aired and future episodes must add up to the total")
        if self.watched_aired_episodes > self.aired_episodes:
            raise ValueError("watched aired episodes cannot exceed aired episodes")
        return self


class WatchStatusUpdate(BaseModel):
    """Request body for a user-declared status."""

    status: WatchStatus


class NewContentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    show_ids: list[int] = Field(alias="showIds", min_length=1)


class ProfileShowEntry(BaseModel):
    """One line of the cached per-profile show view."""

    show_id: int = Field(serialization_alias="showId")
    title: str
    status: WatchStatus
    in_production: bool = Field(serialization_alias="inProduction")
