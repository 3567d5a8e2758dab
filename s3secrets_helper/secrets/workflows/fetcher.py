"""Concurrent fetching of bucket keys with results delivered in request order."""
import queue
import logging
import threading
from typing import Iterator, List

from ..domains.errors import ForbiddenError, NotFoundError
from ..domains.models import BlobStore, FetchResult, Outcome

logger = logging.getLogger(__name__)

_CLOSED = object()


class ResultStream:
    """
    A closable stream of FetchResults.

    Iterating blocks until the next result arrives and stops once the
    stream is closed.
    """

    def __init__(self):
        self._queue = queue.Queue()

    def put(self, result: FetchResult) -> None:
        self._queue.put(result)

    def close(self) -> None:
        self._queue.put(_CLOSED)

    def __iter__(self) -> Iterator[FetchResult]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item


def _fetch(client: BlobStore, bucket: str, key: str) -> FetchResult:
    try:
        data = client.get(key)
    except NotFoundError:
        return FetchResult(bucket, key, outcome=Outcome.NOT_FOUND)
    except ForbiddenError:
        return FetchResult(bucket, key, outcome=Outcome.FORBIDDEN)
    except Exception as e:
        # Carried to the handler, which logs it with the key.
        return FetchResult(bucket, key, outcome=Outcome.OTHER_ERROR, error=str(e))
    return FetchResult(bucket, key, data=data or b"")


def _fetch_and_pass(client, bucket, key, link, next_link):
    result = _fetch(client, bucket, key)
    results = link.get()  # wait for the previous key to hand over the stream
    results.put(result)
    next_link.put(results)


def _close_when_done(link):
    link.get().close()


def fetch_all(client: BlobStore, keys: List[str]) -> ResultStream:
    """
    Fetch keys from the bucket concurrently.

    Concurrency is unbounded; intended for a handful of keys. Every key
    yields exactly one result, in the originally requested order.

    The output stream is handed along a chain of single-slot queues, one
    between each pair of fetch threads: each thread fetches straight away,
    then waits for the stream from its predecessor, writes its result and
    passes the stream on. The last link closes it.
    """
    bucket = client.bucket
    results = ResultStream()

    link = queue.Queue(maxsize=1)
    link.put(results)

    for key in keys:
        next_link = queue.Queue(maxsize=1)
        threading.Thread(
            target=_fetch_and_pass,
            args=(client, bucket, key, link, next_link),
            name=f"fetch:{key}",
            daemon=True,
        ).start()
        link = next_link

    threading.Thread(target=_close_when_done, args=(link,), name="fetch:close", daemon=True).start()
    return results
