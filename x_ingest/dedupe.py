from __future__ import annotations

from typing import Sequence

from .feed_item import FeedItem


def dedupe(batch: Sequence[FeedItem], cursor: str | None) -> list[FeedItem]:
    """
    Return the items of a newest-first batch that are newer than `cursor`, oldest first.

    - No cursor (first run): the whole batch is new.
    - Cursor found at index k: only batch[:k] is new.
    - Cursor not in the batch: the whole batch is treated as new. The feed gives no
      total order over ids, so a gap larger than one page can re-deliver or skip items.
    """
    if cursor is None:
        return list(reversed(batch))

    for index, item in enumerate(batch):
        if item.id == cursor:
            return list(reversed(batch[:index]))

    return list(reversed(batch))
