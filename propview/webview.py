"""
Playwright bridge: answers a real browser's requests through the service
worker so the rendered pages get the same offline behaviour as the client.
"""
import logging
from typing import Optional

import httpx
from playwright.async_api import async_playwright

from .offline import WIRE_HEADERS, ServiceWorker

logger = logging.getLogger(__name__)


async def route_through_worker(context, worker: ServiceWorker, pattern: str = "**/*") -> None:
    """Register a route on a BrowserContext (or Page) that delegates GETs to ``worker``."""

    async def handle(route, request) -> None:
        if request.method != "GET" or not request.url.startswith(("http://", "https://")):
            await route.continue_()
            return
        outgoing = httpx.Request("GET", request.url, headers=request.headers)
        try:
            response = await worker.handle_async_request(outgoing)
            body = await response.aread()
        except httpx.HTTPError as exc:
            logger.warning(f"Worker could not answer {request.url}: {exc}")
            await route.abort()
            return
        headers = {k: v for k, v in response.headers.items() if k.lower() not in WIRE_HEADERS}
        await route.fulfill(status=response.status_code, headers=headers, body=body)

    await context.route(pattern, handle)


async def open_listing_page(url: str, worker: ServiceWorker, screenshot: Optional[str] = None,
                            headless: bool = True) -> str:
    """Open ``url`` in Chromium behind the worker and return the page title."""
    launch_args = ["--disable-blink-features=AutomationControlled"]
    if headless:
        launch_args += ["--disable-dev-shm-usage", "--no-sandbox", "--disable-gpu"]

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=headless, args=launch_args)
        context = await browser.new_context(viewport={"width": 1280, "height": 900}, locale="en-US")
        context.set_default_navigation_timeout(45_000)
        await route_through_worker(context, worker)

        page = await context.new_page()
        logger.info(f">>> Opening {url}")
        await page.goto(url, wait_until="domcontentloaded")
        title = await page.title()
        if screenshot:
            await page.screenshot(path=screenshot, full_page=True)
            logger.info(f">>> Screenshot saved to {screenshot}")

        await context.close()
        await browser.close()
    return title
