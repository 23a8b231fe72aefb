from datetime import datetime
from typing import ClassVar, Generic, List, Optional, TypeVar
from pydantic import BaseModel, ConfigDict, Field, field_validator

class ResumeState(BaseModel):
    position: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)  # Informational only

    @field_validator("position", "total", mode="before")
    @classmethod
    def _truncate_seconds(cls, value):
        # Kodi reports resume points as fractional seconds
        if isinstance(value, float):
            return int(value)
        return value

class MediaItem(BaseModel):
    """Watch state shared by movies and episodes."""
    model_config = ConfigDict(populate_by_name=True)

    kind: ClassVar[str] = "media"

    label: str = ""
    resume: ResumeState = Field(default_factory=ResumeState)
    play_count: int = Field(default=0, ge=0, alias="playcount")

    # Set by the reconciler only, never persisted
    is_watched_outdated: bool = Field(default=False, exclude=True)
    is_resume_outdated: bool = Field(default=False, exclude=True)

    @property
    def is_outdated(self) -> bool:
        return self.is_watched_outdated or self.is_resume_outdated

    @property
    def display_name(self) -> str:
        return self.label

class Movie(MediaItem):
    kind: ClassVar[str] = "movie"

    library_id: int = Field(default=0, alias="movieid")
    external_number: str = Field(default="", alias="imdbnumber")
    year: str = ""

    @field_validator("year", mode="before")
    @classmethod
    def _year_as_string(cls, value):
        if value is None:
            return ""
        return str(value)

    @property
    def display_name(self) -> str:
        return f"{self.label} {self.year}"

class Episode(MediaItem):
    kind: ClassVar[str] = "episode"

    library_id: int = Field(default=0, alias="episodeid")
    show_title: str = Field(default="", alias="showtitle")

    @property
    def display_name(self) -> str:
        return f"{self.show_title} {self.label}"

T = TypeVar("T", bound=MediaItem)

class Snapshot(BaseModel, Generic[T]):
    items: List[T] = Field(default_factory=list)
    has_data: bool = False  # False when the fetch failed or nothing was loaded

    @property
    def count(self) -> int:
        return len(self.items)

    @property
    def count_watched(self) -> int:
        return sum(1 for item in self.items if item.play_count > 0)

    @property
    def count_resumable(self) -> int:
        return sum(1 for item in self.items if item.resume.position > 0)

class LibrarySyncState(BaseModel):
    movies: Snapshot[Movie] = Field(default_factory=Snapshot[Movie])
    episodes: Snapshot[Episode] = Field(default_factory=Snapshot[Episode])

    @property
    def has_results(self) -> bool:
        return self.movies.has_data and self.episodes.has_data

class ChangeLogEntry(BaseModel):
    timestamp: datetime = Field(default_factory=datetime.now)
    library: str = ""
    message: str
    detail: str = ""

class LaneReport(BaseModel):
    name: str
    address: str = ""
    state: str = "offline"
    historic: bool = False  # Data came from the snapshot cache
    has_results: bool = False
    movies: int = 0
    movies_watched: int = 0
    movies_resumable: int = 0
    episodes: int = 0
    episodes_watched: int = 0
    episodes_resumable: int = 0
    out_of_sync: int = 0
    updated: int = 0
    failed: int = 0

class RunReport(BaseModel):
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    lanes: List[LaneReport] = Field(default_factory=list)
    changes: int = 0
