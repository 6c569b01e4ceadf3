# crawler/oracle.py
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from openai import AsyncOpenAI

from .config import OPENAI_API_KEY, OPENAI_MODEL, OPENAI_LOG_PATH, GUIDANCE_PATH
from .utils import network_retry

logger = logging.getLogger("oracle")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
logger.addHandler(handler)

DEFAULT_GUIDANCE = (
    "Consider items appealing if they seem useful, high quality, or interesting. "
    "Avoid junk, redundant, or low-value items."
)
REPO_GUIDANCE = Path(__file__).resolve().parent.parent / "guidance.md"


def load_guidance(path=GUIDANCE_PATH):
    """Read the free-form preference document, falling back to a built-in default."""
    for candidate in (Path(path), REPO_GUIDANCE):
        if candidate.is_file():
            return candidate.read_text(encoding="utf-8")
    return DEFAULT_GUIDANCE


def parse_string_list(content, keys):
    """
    Pull a list of strings out of a model reply.

    Accepts a bare JSON array, an object holding the array under one of
    ``keys`` (or as its only values), or free text containing an array.
    Raises ValueError when no list can be found.
    """
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        m = re.search(r"\[[\s\S]*?\]", content)
        if not m:
            raise ValueError(f"No JSON array in reply: {content[:200]!r}")
        parsed = json.loads(m.group(0))

    if isinstance(parsed, dict):
        for k in keys:
            if isinstance(parsed.get(k), list):
                parsed = parsed[k]
                break
        else:
            flat = []
            for v in parsed.values():
                flat.extend(v if isinstance(v, list) else [v])
            parsed = flat
    if not isinstance(parsed, list):
        raise ValueError(f"Reply is not a list: {content[:200]!r}")
    return [str(x) for x in parsed]


class PreferenceOracle:
    """
    Black-box preference matcher backed by an OpenAI chat model.

    Empty answers are authoritative ("select none"). Transport and parse
    failures are logged and turned into a safe fallback so the cycle continues.
    """

    def __init__(self, api_key=OPENAI_API_KEY, model=OPENAI_MODEL, log_path=OPENAI_LOG_PATH,
                 guidance_path=GUIDANCE_PATH, client=None):
        self.model = model
        self.log_path = log_path
        self.guidance_path = guidance_path
        self.enabled = bool(client or (api_key or "").strip())
        self.client = client or (AsyncOpenAI(api_key=api_key) if self.enabled else None)

    @network_retry(attempts=2)
    async def _complete(self, system, user):
        res = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            response_format={"type": "json_object"},
        )
        content = (res.choices[0].message.content or "").strip()
        return content, res.usage

    def _log_exchange(self, inquiry, system, user, response, result, usage=None):
        ts = datetime.now(timezone.utc).isoformat()
        usage_line = ""
        if usage is not None:
            usage_line = (
                f"\nusage: prompt_tokens={getattr(usage, 'prompt_tokens', '?')}, "
                f"completion_tokens={getattr(usage, 'completion_tokens', '?')}"
            )
        block = "\n".join(
            [
                f"\n--- {ts} [{inquiry}] ---",
                "[SYSTEM]", system,
                "[USER]", user,
                "[RESPONSE]", response,
                "[PARSED RESULT]", json.dumps(result),
                usage_line,
                "",
            ]
        )
        try:
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(block)
        except OSError as e:
            logger.error(f"Failed to write {self.log_path}: {e}")

    async def classify_appeal(self, items):
        """
        Ask which of ``items`` match the user's guidance.

        Returns:
            list[str]: Upper-cased identifiers exactly as the model returned
            them. They are not checked against ``items``; reconciliation does
            that.
        """
        if not items:
            return []
        if not self.enabled:
            logger.warning("No OPENAI_API_KEY set; treating all new items as not appealing")
            return []

        guidance = load_guidance(self.guidance_path)
        listing = "\n".join(f"- [{it.asin}] {it.name}" for it in items)
        system = (
            "You are a filter for Amazon Vine product recommendations. Use the guidance "
            "below to decide which items the user would find appealing. Reply with a JSON "
            'object {"asins": [...]} listing the 10-character IDs in brackets.\n\n'
            f"Guidance from the user:\n{guidance}"
        )
        user = f"Which of these products are appealing?\n\n{listing}"
        try:
            content, usage = await self._complete(system, user)
            asins = [a.strip().upper() for a in parse_string_list(content, ("asins", "appealing"))]
        except Exception as e:
            logger.error(f"Appeal classification failed for {len(items)} item(s): {e}")
            return []
        self._log_exchange("classify_appeal", system, user, content,
                           {"asins": asins, "batch_size": len(items)}, usage)
        logger.info(f"classify_appeal: {len(asins)} appealing of {len(items)}")
        return asins

    async def filter_subcategories(self, category, names):
        """
        Choose which subcategories of ``category`` are worth browsing.

        Returns only names from ``names``. An empty list is a real answer.
        Without an API key, or when the call fails, every name is returned.
        """
        if not names:
            return []
        if not self.enabled:
            logger.warning(f"No OPENAI_API_KEY set; crawling all subcategories under {category}")
            return list(names)

        guidance = load_guidance(self.guidance_path)
        listing = "\n".join(f"- {n}" for n in names)
        system = (
            "You are a filter for Amazon Vine category preferences. Given a top-level "
            "category and its subcategories, reply with a JSON object "
            '{"subcategories": [...]} holding the exact subcategory names the user would '
            f"want to browse.\n\nGuidance from the user:\n{guidance}"
        )
        user = f'Top-level category: "{category}"\n\nSubcategories:\n{listing}'
        try:
            content, usage = await self._complete(system, user)
            picked = parse_string_list(content, ("subcategories", "names"))
        except Exception as e:
            logger.error(f"Subcategory filter failed for {category}: {e}")
            return list(names)
        valid = {n.strip() for n in names}
        filtered = [n for n in names if n.strip() in {p.strip() for p in picked}]
        self._log_exchange("filter_subcategories", system, user, content,
                           {"category": category, "filtered": filtered}, usage)
        logger.info(f"filter_subcategories {category!r}: {len(filtered)} of {len(valid)}")
        return filtered
