"""Destination index naming."""

from typing import Callable

from es_shipper.timestamps import now_iso

DATE_PLACEHOLDER = "%{DATE}"


class IndexNameResolver:
    """Maps a document timestamp to an index name.

    *index* is either a template such as ``"logs-%{DATE}"``, where the
    placeholder becomes the ``YYYY-MM-DD`` part of the timestamp, or a
    callable receiving the timestamp string and returning the name.
    """

    def __init__(self, index: str | Callable[[str], str]):
        self._index = index

    @property
    def is_dynamic(self) -> bool:
        return callable(self._index)

    def resolve(self, timestamp=None) -> str:
        if timestamp is None:
            timestamp = now_iso()

        if callable(self._index):
            return self._index(timestamp)

        date = timestamp[:10] if isinstance(timestamp, str) else ""
        return self._index.replace(DATE_PLACEHOLDER, date)

    __call__ = resolve
