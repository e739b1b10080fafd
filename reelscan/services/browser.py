from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from playwright.async_api import Browser, Error as PlaywrightError, Page, Playwright, async_playwright

from reelscan.schemas import ChromiumOptions, GlRenderer
from reelscan.services.cleanup import Borrowed, Owned, Ownership, ResourceHandle
from reelscan.services.errors import SessionAcquisitionError

LOGGER = logging.getLogger("reelscan.browser")

_BASE_ARGS = [
    "--disable-dev-shm-usage",
    "--autoplay-policy=no-user-gesture-required",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--no-first-run",
]

_GL_ARGS: Dict[GlRenderer, List[str]] = {
    GlRenderer.swangle: ["--use-gl=angle", "--use-angle=swiftshader"],
    GlRenderer.angle: ["--use-gl=angle"],
    GlRenderer.egl: ["--use-gl=egl"],
    GlRenderer.swiftshader: ["--use-gl=swiftshader"],
    GlRenderer.vulkan: ["--use-angle=vulkan", "--use-vulkan=native", "--enable-features=Vulkan"],
    GlRenderer.angle_egl: ["--use-gl=angle", "--use-angle=gl-egl"],
}


def chromium_args(options: ChromiumOptions, platform: str = sys.platform) -> List[str]:
    args = list(_BASE_ARGS)
    if options.ignore_certificate_errors:
        args.append("--ignore-certificate-errors")
    if options.disable_web_security:
        args.append("--disable-web-security")
    if options.gl is not None:
        args.extend(_GL_ARGS[options.gl])
    if platform.startswith("linux") and not options.enable_multi_process_on_linux:
        args.append("--single-process")
    return args


@dataclass
class LaunchedBrowser:
    """A Chromium instance started by reelscan together with its Playwright driver."""

    browser: Browser
    playwright: Optional[Playwright] = None

    async def close(self) -> None:
        try:
            await self.browser.close()
        finally:
            if self.playwright is not None:
                await self.playwright.stop()


class BrowserLauncher:
    async def launch(
        self,
        *,
        executable_path: Optional[str],
        chromium_options: ChromiumOptions,
    ) -> LaunchedBrowser:  # pragma: no cover - interface stub
        raise NotImplementedError


class PlaywrightLauncher(BrowserLauncher):
    """Start Chromium through the Playwright driver."""

    async def launch(
        self,
        *,
        executable_path: Optional[str],
        chromium_options: ChromiumOptions,
    ) -> LaunchedBrowser:
        if executable_path and not Path(executable_path).exists():
            raise SessionAcquisitionError(f"Browser executable {executable_path} does not exist")
        try:
            playwright = await async_playwright().start()
        except PlaywrightError as exc:
            raise SessionAcquisitionError(f"Could not start the Playwright driver: {exc}") from exc
        launch_kwargs: Dict[str, Any] = {
            "headless": chromium_options.headless,
            "args": chromium_args(chromium_options),
        }
        if executable_path:
            launch_kwargs["executable_path"] = executable_path
        try:
            browser = await playwright.chromium.launch(**launch_kwargs)
        except PlaywrightError as exc:
            await playwright.stop()
            raise SessionAcquisitionError(f"Could not launch Chromium: {exc}") from exc
        LOGGER.info("Launched Chromium %s", getattr(browser, "version", "unknown"))
        return LaunchedBrowser(browser=browser, playwright=playwright)


@dataclass
class PageHandle(ResourceHandle[Page]):
    session: Optional[Ownership] = None


class SessionProvider:
    """Open a page on a caller-supplied browser or on one launched for the call."""

    def __init__(self, launcher: Optional[BrowserLauncher] = None) -> None:
        self._launcher = launcher or PlaywrightLauncher()

    async def acquire_page(
        self,
        *,
        browser: Optional[Browser] = None,
        browser_executable: Optional[str] = None,
        chromium_options: Optional[ChromiumOptions] = None,
        device_scale_factor: Optional[float] = None,
    ) -> PageHandle:
        options = chromium_options or ChromiumOptions()
        session: Ownership
        if browser is not None:
            session = Borrowed(browser)
            target = browser
        else:
            launched = await self._launcher.launch(
                executable_path=browser_executable,
                chromium_options=options,
            )
            session = Owned(launched)
            target = launched.browser

        page_kwargs: Dict[str, Any] = {}
        if device_scale_factor is not None:
            page_kwargs["device_scale_factor"] = device_scale_factor
        if options.user_agent:
            page_kwargs["user_agent"] = options.user_agent
        try:
            page = await target.new_page(**page_kwargs)
        except PlaywrightError as exc:
            if isinstance(session, Owned):
                await _close_quietly(session.resource)
            raise SessionAcquisitionError(f"Could not open a page in the browser: {exc}") from exc

        async def _release() -> None:
            if isinstance(session, Owned):
                LOGGER.debug("Closing browser launched for this call")
                await session.resource.close()
            else:
                LOGGER.debug("Closing page opened on caller-supplied browser")
                await page.close()

        return PageHandle(resource=page, _release=_release, session=session)


async def _close_quietly(launched: LaunchedBrowser) -> None:
    try:
        await launched.close()
    except PlaywrightError as exc:
        LOGGER.warning("Failed to close browser after page creation failed: %s", exc)
