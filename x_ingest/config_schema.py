from __future__ import annotations

import re
from datetime import date, datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _validate_env_var_name(value: str) -> str:
    name = (value or "").strip()
    if not _ENV_NAME_RE.fullmatch(name):
        raise ValueError("must be a valid environment variable name")
    return name


PositiveInt = Annotated[int, Field(ge=1)]
NonNegativeInt = Annotated[int, Field(ge=0)]


class ApifyConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    token_env: str = "APIFY_TOKEN"
    search_actor: str = "apidojo/tweet-scraper"
    user_actor: str = "apidojo/twitter-user-scraper"
    timeout_secs: PositiveInt | None = 300
    stream_page_size: PositiveInt = 20

    @field_validator("token_env")
    @classmethod
    def _token_env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)


class TriggerConfig(BaseModel):
    """Fixed-interval polling trigger."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    trigger_on: Literal["newTweets", "mentions", "timeline"] = "newTweets"
    search_query: str = ""
    username: str = ""
    poll_interval: Annotated[float, Field(gt=0)] = 60  # seconds
    max_results: PositiveInt = 10


class AdvancedFilterConfig(BaseModel):
    """
    Raw advanced filter fields.

    Kept loosely typed; coercion and the "0/false means unset" rule live in the filter builder.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    include_phrase: str | None = None
    from_users: str | list[str] | None = None
    to_users: str | list[str] | None = None
    language: str | None = None
    start_date: str | datetime | date | None = None
    end_date: str | datetime | date | None = None
    min_replies: int | None = None
    min_retweets: int | None = None
    min_likes: int | None = None
    top: bool | None = None


class StreamOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    include_metadata: bool = False
    include_start_message: bool = True


class StreamConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    stream_type: Literal["search", "fromUsers", "mentions", "hashtags", "advanced"] = "search"
    search_terms: str = ""
    usernames: str = ""
    mention_users: str = ""
    hashtags: str = ""
    advanced_filter: AdvancedFilterConfig = Field(default_factory=AdvancedFilterConfig)
    polling_interval: NonNegativeInt = 60000  # milliseconds
    options: StreamOptions = Field(default_factory=StreamOptions)


class StateConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    scope: str = "default"

    @field_validator("scope")
    @classmethod
    def _scope_must_be_set(cls, v: str) -> str:
        s = (v or "").strip()
        if not s:
            raise ValueError("must be non-empty")
        return s


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    apify: ApifyConfig = Field(default_factory=ApifyConfig)
    trigger: TriggerConfig = Field(default_factory=TriggerConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    state: StateConfig = Field(default_factory=StateConfig)
