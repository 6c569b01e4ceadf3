# crawler/config.py
import os
from dotenv import load_dotenv

load_dotenv()


def _clamped_int(name, default, low, high):
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        value = default
    return min(high, max(low, value))


VINE_URL = os.getenv("VINE_URL", "https://www.amazon.com/vine/vine-items")
PRODUCT_URL = "https://www.amazon.com/dp/{asin}"

# section -> listing queue parameter
SECTION_QUEUES = {
    "recommended": "potluck",
    "available": "last_chance",
    "additional": "encore",
}
SECTIONS = list(SECTION_QUEUES)
CATEGORY_SECTIONS = {
    s.strip()
    for s in os.getenv("CATEGORY_SECTIONS", "additional").split(",")
    if s.strip()
}

PAGE_SIZE = 24
PAGE_CAP = int(os.getenv("PAGE_CAP", "500"))

AI_BATCH_SIZE = _clamped_int("AI_BATCH_SIZE", 50, 10, 500)
AI_MAX_ITEMS_PER_RUN = _clamped_int("AI_MAX_ITEMS_PER_RUN", 500, 50, 2000)
PARTS_ACCESSORIES_THRESHOLD = int(os.getenv("PARTS_ACCESSORIES_THRESHOLD", "500"))

HEADLESS = os.getenv("HEADLESS", "true").lower() != "false"
BROWSER_DATA_DIR = os.getenv("BROWSER_DATA_DIR", ".browser-data")
NAV_TIMEOUT_MS = int(os.getenv("NAV_TIMEOUT_MS", "30000"))
SIGNIN_WAIT_SECONDS = int(os.getenv("SIGNIN_WAIT_SECONDS", "90"))
AMAZON_EMAIL = os.getenv("AMAZON_EMAIL")
AMAZON_PASSWORD = os.getenv("AMAZON_PASSWORD")

# minutes between checks; the scheduler jitters inside this window
CHECK_INTERVAL_MIN = int(os.getenv("CHECK_INTERVAL_MIN", "5"))
CHECK_INTERVAL_MAX = int(os.getenv("CHECK_INTERVAL_MAX", "45"))

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_LOG_PATH = os.getenv("OPENAI_LOG_PATH", "openai.log")
GUIDANCE_PATH = os.getenv("GUIDANCE_PATH", "guidance.md")

RECOMMENDATIONS_LOG = os.getenv("RECOMMENDATIONS_LOG", "recommendations.log")
REPORT_DIR = os.getenv("REPORT_DIR", "./reports")
