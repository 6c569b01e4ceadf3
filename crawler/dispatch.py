# crawler/dispatch.py
import asyncio
import logging

from .config import AI_BATCH_SIZE, AI_MAX_ITEMS_PER_RUN

logger = logging.getLogger("dispatch")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
logger.addHandler(handler)


class BatchDispatcher:
    """
    Streams unseen items to the classifier in fixed-size batches.

    Use as an async context manager around the crawl. Every full batch is
    started as its own task in a TaskGroup while crawling carries on; the
    remainder is flushed on exit, and exit only returns once every
    classification call has finished. Items past ``max_items`` are dropped at
    enqueue time and never classified.

    Example:
        async with BatchDispatcher(oracle.classify_appeal) as dispatcher:
            async for chunk in crawler.crawl_leaf(...):
                dispatcher.enqueue(chunk)
        appealing = dispatcher.results
    """

    def __init__(self, classify, batch_size=AI_BATCH_SIZE, max_items=AI_MAX_ITEMS_PER_RUN):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.classify = classify
        self.batch_size = batch_size
        self.max_items = max_items
        self.queue = []
        self.enqueued = set()
        self.dropped = 0
        self.batches = 0
        self.results = []
        self._group = None

    async def __aenter__(self):
        self._group = asyncio.TaskGroup()
        await self._group.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None and self.queue:
            self._flush(len(self.queue))
        try:
            return await self._group.__aexit__(exc_type, exc, tb)
        finally:
            self._group = None
            if self.dropped:
                logger.warning(
                    f"Classification capped at {self.max_items} item(s); "
                    f"{self.dropped} not classified"
                )
            logger.info(f"{self.batches} batch(es) classified, {len(self.results)} appealing id(s)")

    @property
    def classified(self):
        return len(self.enqueued)

    def enqueue(self, items):
        """
        Queue unseen items for classification.

        Identifiers already queued this cycle are ignored. Starts a
        classification task each time a full batch is available.
        """
        for it in items:
            if it.asin in self.enqueued:
                continue
            if len(self.enqueued) >= self.max_items:
                self.dropped += 1
                continue
            self.enqueued.add(it.asin)
            self.queue.append(it)
        while len(self.queue) >= self.batch_size:
            self._flush(self.batch_size)

    def _flush(self, n):
        batch, self.queue = self.queue[:n], self.queue[n:]
        self.batches += 1
        logger.info(f"Dispatching batch {self.batches} ({len(batch)} item(s))")
        self._group.create_task(self._run(batch))

    async def _run(self, batch):
        self.results.extend(await self.classify(batch))


def reconcile(appealing_ids, items_by_asin):
    """
    Match classifier output back to crawled items.

    Returns the identifiers, in first-returned order and without duplicates,
    that correspond to a crawled item. Anything else is logged as unmatched.
    """
    matched = []
    seen = set()
    for raw in appealing_ids:
        asin = str(raw).strip().upper()
        if asin in seen:
            continue
        seen.add(asin)
        if asin in items_by_asin:
            matched.append(asin)
        else:
            logger.warning(f"Classifier returned unmatched ASIN {asin}; ignoring")
    return matched
