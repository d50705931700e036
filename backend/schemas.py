"""
Request validators and response shapes for the JSON API.

Field names follow the wire format the pages and clients already use
(camelCase for accounts and collections, snake_case for movie rows).
"""

from datetime import date, datetime
from typing import Annotated, List, Literal, Optional

from pydantic import BaseModel, BeforeValidator, EmailStr, Field, field_validator, model_validator


def _strip(value):
    return value.strip() if isinstance(value, str) else value


Trimmed = Annotated[str, BeforeValidator(_strip)]
TrimmedEmail = Annotated[EmailStr, BeforeValidator(_strip)]


# --- Auth Schemas ---
class SignUpRequest(BaseModel):
    firstName: Trimmed = Field(..., min_length=1, max_length=100)
    lastName: Trimmed = Field(..., min_length=1, max_length=100)
    email: TrimmedEmail
    username: Trimmed = Field(..., min_length=3, max_length=32, pattern=r"^[a-zA-Z0-9._-]+$")
    password: Trimmed = Field(..., min_length=8, max_length=256)

class SignInRequest(BaseModel):
    id: Trimmed = Field(..., min_length=1, max_length=254, description="Email or username")
    password: str = Field(..., min_length=1)

class PublicUser(BaseModel):
    userId: int
    firstName: str
    lastName: str
    email: str
    username: str

class SignUpResponse(PublicUser):
    ok: bool = True

class SignInResponse(BaseModel):
    ok: bool = True
    user: PublicUser


# --- Collection Schemas ---
class CollectionCreate(BaseModel):
    name: Trimmed = Field(..., min_length=1, max_length=200)

class CollectionRename(CollectionCreate):
    pass

class CollectionResponse(BaseModel):
    collectionId: int
    name: str
    userId: int
    movieCount: int = 0

class CollectionMovieAdd(BaseModel):
    """Either an explicit movie id or a title (with an optional release year) to look up."""
    movUid: Optional[int] = Field(None, gt=0, strict=True)
    title: Optional[Trimmed] = Field(None, min_length=1, max_length=300)
    year: Optional[int] = Field(None, ge=1800, le=2100)

    @model_validator(mode="after")
    def check_one_of(self):
        if self.movUid is None and not self.title:
            raise ValueError("Provide movUid or title")
        return self

class CollectionMovieRemove(BaseModel):
    movUid: int = Field(..., gt=0, strict=True)

class CollectionMovieRow(BaseModel):
    id: int
    title: str
    genre: str
    duration: str
    year: Optional[int] = None

class MovieChoice(BaseModel):
    movUid: int
    title: str
    year: Optional[int] = None


# --- Rating / Watch Schemas ---
class RateRequest(BaseModel):
    rating_value: int = Field(..., ge=1, le=5, strict=True)
    rated_at: Optional[datetime] = None

class WatchRequest(BaseModel):
    date: Optional[datetime] = None

TopSort = Literal["rating", "plays", "combo"]


# --- Follow Schemas ---
class FollowRequest(BaseModel):
    email: TrimmedEmail

class FollowUser(BaseModel):
    user_id: int
    first_name: str
    last_name: str
    username: str
    email: str


# --- Explore Schemas ---
EXPLORE_SORTS = ("title", "avg_rating", "duration", "genre", "studio", "release_date")
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

class ExploreParams(BaseModel):
    """Normalized search/sort/paging options. Unknown sorts fall back to title; paging is clamped."""
    q: Trimmed = ""
    genre: Trimmed = ""
    cast: Trimmed = ""
    director: Trimmed = ""
    studio: Trimmed = ""
    released_from: Optional[date] = None
    released_to: Optional[date] = None
    sort: str = "title"
    order: Literal["asc", "desc"] = "asc"
    page: int = 1
    pageSize: int = DEFAULT_PAGE_SIZE

    @field_validator("sort", mode="before")
    @classmethod
    def known_sort(cls, value):
        value = (value or "title").lower()
        return value if value in EXPLORE_SORTS else "title"

    @field_validator("order", mode="before")
    @classmethod
    def normalize_order(cls, value):
        return "desc" if (value or "").lower() == "desc" else "asc"

    @field_validator("page", mode="after")
    @classmethod
    def clamp_page(cls, value):
        return max(1, value)

    @field_validator("pageSize", mode="after")
    @classmethod
    def clamp_page_size(cls, value):
        return min(MAX_PAGE_SIZE, max(1, value))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.pageSize

class ExplorePage(BaseModel):
    total: int
    page: int
    pageSize: int
    items: List[dict]
