# crawler/session.py
import asyncio
import logging
from pathlib import Path
from playwright.async_api import (
    async_playwright,
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeout,
)

from .config import (
    AMAZON_EMAIL,
    AMAZON_PASSWORD,
    BROWSER_DATA_DIR,
    HEADLESS,
    NAV_TIMEOUT_MS,
    SIGNIN_WAIT_SECONDS,
)

logger = logging.getLogger("session")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
logger.addHandler(handler)

EMAIL_SELECTOR = "#ap_email, input[name=email], input[type=email]"
PASSWORD_SELECTOR = "#ap_password, input[name=password], input[type=password]"
CONTINUE_SELECTOR = "#continue, input#continue"
SIGNIN_SELECTOR = "#signInSubmit, input#signInSubmit"
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class NavigationError(Exception):
    """Raised when a page could not be loaded within the navigation timeout."""


class PageSession:
    """
    A single navigable, authenticated browsing context.

    The crawl drives exactly one of these per cycle and navigates strictly
    sequentially; concrete sessions are owned by the caller and passed in.
    """

    @property
    def url(self):
        raise NotImplementedError

    async def goto(self, url):
        """Navigate to ``url``. Raises NavigationError on timeout or load failure."""
        raise NotImplementedError

    async def content(self):
        """Return the HTML of the current page."""
        raise NotImplementedError

    async def close(self):
        pass


class BrowserSession(PageSession):
    """
    Playwright-backed session with a persistent browser profile.

    The profile directory keeps cookies between process restarts, so a manual
    sign-in normally only has to happen once.
    """

    def __init__(self, headless=HEADLESS, user_data_dir=BROWSER_DATA_DIR,
                 timeout_ms=NAV_TIMEOUT_MS):
        self.headless = headless
        self.user_data_dir = str(Path(user_data_dir).resolve())
        self.timeout_ms = timeout_ms
        self._playwright = None
        self._context = None
        self._page = None

    async def start(self):
        self._playwright = await async_playwright().start()
        self._context = await self._playwright.chromium.launch_persistent_context(
            self.user_data_dir,
            headless=self.headless,
            user_agent=USER_AGENT,
            viewport={"width": 1280, "height": 800},
            args=["--no-sandbox", "--disable-setuid-sandbox"],
        )
        self._page = (
            self._context.pages[0]
            if self._context.pages
            else await self._context.new_page()
        )
        logger.info(f"Browser profile: {self.user_data_dir} (session reused across runs)")
        return self

    async def close(self):
        if self._context is not None:
            await self._context.close()
            self._context = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    @property
    def url(self):
        return self._page.url

    async def goto(self, url):
        try:
            await self._page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
        except (PlaywrightTimeout, PlaywrightError) as e:
            raise NavigationError(f"Navigation to {url} failed: {e}") from e
        if self._needs_sign_in():
            await self.sign_in()
            try:
                await self._page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
            except (PlaywrightTimeout, PlaywrightError) as e:
                raise NavigationError(f"Navigation to {url} failed after sign-in: {e}") from e

    async def content(self):
        try:
            return await self._page.content()
        except PlaywrightError as e:
            raise NavigationError(f"Could not read {self.url}: {e}") from e

    def _needs_sign_in(self):
        return "ap/signin" in self._page.url or "ap/mfa" in self._page.url

    async def _fill(self, selector, value):
        el = await self._page.query_selector(selector)
        if el is None:
            return False
        await el.fill(value)
        return True

    async def sign_in(self):
        """
        Best-effort sign-in on the current page.

        Types the configured credentials when the form is present, then gives a
        human up to SIGNIN_WAIT_SECONDS to finish any OTP or captcha step in
        the browser window. Returns regardless of whether sign-in succeeded.
        """
        page = self._page
        if AMAZON_EMAIL and await self._fill(EMAIL_SELECTOR, AMAZON_EMAIL):
            try:
                await page.click(CONTINUE_SELECTOR, timeout=5000)
                await page.wait_for_load_state("domcontentloaded")
            except PlaywrightTimeout:
                logger.info("No continue button; assuming single-page sign-in form")
        if AMAZON_PASSWORD and await self._fill(PASSWORD_SELECTOR, AMAZON_PASSWORD):
            try:
                await page.click(SIGNIN_SELECTOR, timeout=5000)
                await page.wait_for_load_state("domcontentloaded", timeout=self.timeout_ms)
            except PlaywrightTimeout:
                logger.warning("Sign-in submit did not complete in time")

        if not self._needs_sign_in():
            return
        logger.warning(
            f"Still on sign-in page. Complete login in the browser (OTP, captcha). "
            f"Waiting up to {SIGNIN_WAIT_SECONDS}s"
        )
        deadline = asyncio.get_running_loop().time() + SIGNIN_WAIT_SECONDS
        while self._needs_sign_in() and asyncio.get_running_loop().time() < deadline:
            await asyncio.sleep(2)
        if self._needs_sign_in():
            logger.warning("Sign-in still incomplete; continuing anyway")
