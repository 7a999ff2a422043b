from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from apify_client import ApifyClientAsync
from apify_client.errors import ApifyApiError

from .config_schema import ApifyConfig
from .errors import FetchError
from .feed_item import FeedItem, UserRecord
from .normalize import feed_items_from_raw, newest_first, user_record_from_raw
from .provider import StreamSession, poll_search_stream
from .query_filter import QueryFilter
from .run_log import RunLogger


@dataclass(frozen=True)
class ActorRunRef:
    actor_id: str
    run_id: str
    default_dataset_id: str


class ApifyTweetProvider:
    """
    Provider backed by Apify's maintained X scraper Actors.

    Each search or timeline read is one Actor run followed by a dataset read.
    Every client call is awaited on the event loop, so cancelling a fetch
    abandons the request instead of leaving a worker thread behind.
    """

    def __init__(
        self,
        token: str,
        *,
        apify: ApifyConfig,
        client: ApifyClientAsync | None = None,
        logger: RunLogger | None = None,
    ) -> None:
        self._apify = apify
        self._client = client if client is not None else ApifyClientAsync(token=token)
        self._log = logger

    async def run_actor(
        self, actor_id: str, run_input: dict[str, Any], *, limit: int | None = None
    ) -> list[dict[str, Any]]:
        try:
            result = await self._client.actor(actor_id).call(
                run_input=run_input,
                timeout_secs=self._apify.timeout_secs,
            )
        except ApifyApiError as e:
            raise FetchError(f"Apify Actor call failed ({actor_id}): {e}") from e
        except Exception as e:
            raise FetchError(f"Unexpected error while calling Apify Actor ({actor_id}): {e}") from e

        if result is None:
            raise FetchError(f"Apify Actor run failed ({actor_id})")

        run_id = (result.get("id") or "").strip()
        dataset_id = (result.get("defaultDatasetId") or "").strip()
        if not run_id or not dataset_id:
            raise FetchError(f"Apify Actor run response missing run id or default dataset id: {result}")

        run = ActorRunRef(actor_id=actor_id, run_id=run_id, default_dataset_id=dataset_id)
        if self._log is not None:
            self._log.info(
                "apify_actor_run",
                actor_id=run.actor_id,
                actor_run_id=run.run_id,
                dataset_id=run.default_dataset_id,
            )

        try:
            return [item async for item in self._client.dataset(dataset_id).iterate_items(limit=limit, clean=True)]
        except ApifyApiError as e:
            raise FetchError(f"Failed to read dataset items ({dataset_id}): {e}") from e
        except Exception as e:
            raise FetchError(f"Unexpected error while reading dataset ({dataset_id}): {e}") from e

    async def search(self, query: QueryFilter, limit: int) -> list[FeedItem]:
        text = query.to_search_query()
        if not text:
            raise FetchError("Search filter is empty; set at least one filter field")

        run_input: dict[str, Any] = {
            "searchTerms": [text],
            "maxItems": int(limit),
            "sort": "Top" if query.top else "Latest",
        }
        items = await self.run_actor(self._apify.search_actor, run_input, limit=limit)
        return newest_first(feed_items_from_raw(items))

    async def user_details(self, handle: str) -> UserRecord | None:
        name = (handle or "").strip().lstrip("@")
        if not name:
            raise FetchError("handle must be non-empty")

        run_input: dict[str, Any] = {"twitterHandles": [name], "maxItems": 1}
        for raw in await self.run_actor(self._apify.user_actor, run_input, limit=5):
            user = user_record_from_raw(raw)
            if user is not None and user.username.casefold() == name.casefold():
                return user
        return None

    async def timeline(self, user_id: str, limit: int) -> list[FeedItem]:
        uid = (user_id or "").strip()
        if not uid:
            raise FetchError("user_id must be non-empty")

        run_input: dict[str, Any] = {
            "startUrls": [f"https://x.com/i/user/{uid}"],
            "maxItems": int(limit),
            "sort": "Latest",
        }
        items = await self.run_actor(self._apify.search_actor, run_input, limit=limit)
        return newest_first(feed_items_from_raw(items))

    def stream(self, query: QueryFilter, interval_ms: int) -> StreamSession:
        return StreamSession(
            poll_search_stream(
                self.search,
                query,
                interval_ms,
                page_size=self._apify.stream_page_size,
            )
        )
