from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ArtistProfileOut(BaseModel):
    id: str
    artist_name: str | None = None
    username: str | None = None
    bio: str | None = None
    genre: str | None = None
    profile_image_url: str | None = None
    subscription_tier: Literal["basic", "pro"] | None = None
    updated_at: datetime | None = None


class ArtistProfileUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    artist_name: str | None = Field(default=None, min_length=1, max_length=120)
    bio: str | None = Field(default=None, max_length=2000)
    genre: str | None = Field(default=None, max_length=80)
    profile_image_url: str | None = Field(default=None, max_length=2048)
