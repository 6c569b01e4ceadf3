# crawler/resolver.py
from . import db
from .utils import normalize_asins


class UnseenResolver:
    """
    Per-page "which of these have I already seen" predicate.

    Wraps a batched store lookup. Called once per listing page by the
    crawler, never once per identifier and never for the whole run.
    """

    def __init__(self, lookup=None):
        self.lookup = lookup or db.already_seen
        self.lookups = 0

    async def __call__(self, asins):
        asins = normalize_asins(asins)
        if not asins:
            return set()
        self.lookups += 1
        return {a.upper() for a in await self.lookup(asins)}
