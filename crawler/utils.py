# crawler/utils.py
import math
import random
import re
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

ASIN_RE = re.compile(r"/dp/([A-Z0-9]{10})(?![A-Z0-9])", re.IGNORECASE)


def extract_asin(href):
    """
    Extract the product identifier from a product URL.

    Matches the ``/dp/<ASIN>`` path segment used by product detail links,
    absolute or relative.

    Args:
        href (str): Product link, e.g. ``https://www.amazon.com/dp/B0F93HFJBZ``

    Returns:
        str or None: Upper-cased 10-character ASIN, or None when the link does
        not point to a product page.
    """
    if not href:
        return None
    m = ASIN_RE.search(href)
    return m.group(1).upper() if m else None


def normalize_asins(asins):
    """Upper-case and strip identifiers, dropping blanks and duplicates in order."""
    out = []
    seen = set()
    for a in asins or []:
        a = str(a).strip().upper()
        if a and a not in seen:
            seen.add(a)
            out.append(a)
    return out


def page_bound(total_count, page_size, page_cap, pagination_max=0):
    """
    Upper bound on the number of listing pages to visit.

    The pagination control is preferred when it shows a last page; otherwise
    the bound is derived from the (possibly stale) total result count. Either
    way it never exceeds ``page_cap``, and is at least 1 so the first page is
    always read.
    """
    from_count = math.ceil(max(total_count, 0) / page_size) or 1
    return max(1, min(page_cap, pagination_max or from_count))


def shuffled(seq):
    """Return a uniformly shuffled copy of ``seq``."""
    out = list(seq)
    random.shuffle(out)
    return out


def network_retry(**tenacity_kwargs):
    """
    Create a tenacity retry decorator for handling network failures.

    Args:
        **tenacity_kwargs: Optional keyword arguments
            - attempts (int): Maximum number of attempts. Defaults to 3.

    Returns:
        tenacity.Retrying: Configured retry decorator. The last exception is
        re-raised once attempts are exhausted.

    Example:
        @network_retry(attempts=2)
        async def complete(messages):
            return await client.chat.completions.create(...)
    """
    return retry(
        stop=stop_after_attempt(tenacity_kwargs.get("attempts", 3)),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(Exception),
        reraise=True,
    )
