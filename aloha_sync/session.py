"""Headless Chromium session against Aloha Enterprise.

``AlohaSession`` walks launch -> login -> dashboard and hands back a page whose
Angular scope is readable. Every wait is bounded; a slow or unreachable portal
ends in a ``SessionError`` subclass carrying a page snapshot, never a hang.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator

from playwright.async_api import Error as PlaywrightError, Page, async_playwright

from .config import Credentials
from .errors import (
    AuthenticationRejected,
    DashboardTimeout,
    LoginFormNotFound,
    SessionLaunchFailed,
)
from .events import log_event

# Assigning .value alone leaves Angular's ngModel stale; the model listens to
# input/change, not keystrokes.
FILL_SCRIPT = """
([selector, value]) => {
  const el = document.querySelector(selector);
  if (!el) return false;
  el.focus();
  el.value = value;
  el.dispatchEvent(new Event('input', { bubbles: true }));
  el.dispatchEvent(new Event('change', { bubbles: true }));
  el.dispatchEvent(new Event('blur', { bubbles: true }));
  return true;
}
"""

FORM_SUBMIT_SCRIPT = """
(selector) => {
  const field = document.querySelector(selector);
  const form = (field && field.form) || document.querySelector('form');
  if (!form) return false;
  form.submit();
  return true;
}
"""

READINESS_SCRIPT = """
(marker) => {
  const text = document.body ? document.body.innerText || '' : '';
  const ng = window.angular;
  let injector = false;
  if (ng) {
    const root = document.querySelector('[ng-app], [data-ng-app], .ng-scope') || document.body;
    try { injector = !!ng.element(root).injector(); } catch (e) { injector = false; }
  }
  return { marker: text.includes(marker), angular: !!ng && injector };
}
"""

SCOPE_REACHABLE_SCRIPT = """
() => {
  const ng = window.angular;
  if (!ng) return false;
  const el = document.querySelector('.ng-scope, [ng-controller], [data-ng-controller]');
  if (!el) return false;
  try { return !!ng.element(el).scope(); } catch (e) { return false; }
}
"""

# Production Angular builds run with debugInfoEnabled(false), which hides
# element scopes. reloadWithDebugInfo() reloads the page with them back on.
DEBUG_INFO_RELOAD_SCRIPT = """
() => {
  if (window.angular && typeof window.angular.reloadWithDebugInfo === 'function') {
    window.angular.reloadWithDebugInfo();
    return true;
  }
  return false;
}
"""

VISIBLE_TEXT_SCRIPT = "() => (document.body ? document.body.innerText || '' : '')"


def _loop_time() -> float:
    return asyncio.get_running_loop().time()


async def visible_text(page: Page) -> str:
    try:
        return await page.evaluate(VISIBLE_TEXT_SCRIPT) or ""
    except Exception:
        return ""


async def page_diagnostics(page: Page | None) -> dict[str, Any]:
    if page is None:
        return {"url": None, "title": None, "text_preview": ""}
    try:
        title = await page.title()
    except Exception:
        title = None
    text = await visible_text(page)
    return {"url": page.url, "title": title, "text_preview": text[:500]}


async def capture_debug_artifacts(page: Page | None, artifact_dir: Path | None, label: str) -> None:
    if page is None or artifact_dir is None:
        return
    try:
        artifact_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        log_event("debug_artifact_failed", label=label, kind="directory", error=str(exc))
        return
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    base = artifact_dir / f"{stamp}_{label}"
    try:
        await page.screenshot(path=str(base.with_suffix(".png")), full_page=True)
    except Exception as exc:
        log_event("debug_artifact_failed", label=label, kind="screenshot", error=str(exc))
    try:
        html = await page.content()
        base.with_suffix(".html").write_text(html, encoding="utf-8")
    except Exception as exc:
        log_event("debug_artifact_failed", label=label, kind="html", error=str(exc))
    log_event("debug_artifacts_saved", label=label, base=str(base))


async def first_usable_locator(page: Page, selectors: list[str]) -> str | None:
    for selector in selectors:
        try:
            if await page.locator(selector).first.count() > 0:
                return selector
        except Exception:
            continue
    return None


async def wait_for_first_locator(page: Page, selectors: list[str], timeout_sec: float) -> str | None:
    deadline = _loop_time() + max(0.5, timeout_sec)
    while True:
        selector = await first_usable_locator(page, selectors)
        if selector or _loop_time() >= deadline:
            return selector
        await asyncio.sleep(0.4)


async def click_first_available(page: Page, selectors: list[str]) -> bool:
    for selector in selectors:
        locator = page.locator(f"{selector}:visible").first
        try:
            if await locator.count() > 0:
                await locator.click(timeout=3000)
                return True
        except Exception:
            continue
    return False


async def fill_field(page: Page, selector: str, value: str) -> bool:
    return bool(await page.evaluate(FILL_SCRIPT, [selector, value]))


async def settle(page: Page, timeout_sec: float) -> None:
    try:
        await page.wait_for_load_state("networkidle", timeout=timeout_sec * 1000)
    except Exception as exc:
        log_event("page_settle_timeout", url=page.url, error=str(exc))


def find_failure_phrase(text: str, phrases: list[str]) -> str | None:
    """Return a short snippet around the first known login-failure phrase."""
    lowered = text.lower()
    for phrase in phrases:
        index = lowered.find(phrase.lower())
        if index >= 0:
            start = max(0, index - 40)
            return text[start:index + len(phrase) + 80].strip()
    return None


async def is_dashboard_ready(page: Page, marker: str) -> bool:
    try:
        state = await page.evaluate(READINESS_SCRIPT, marker)
    except Exception:
        return False
    return bool(state and state.get("marker") and state.get("angular"))


async def wait_for_dashboard_ready(page: Page, marker: str, timeout_sec: float) -> bool:
    deadline = _loop_time() + max(1, timeout_sec)
    while _loop_time() < deadline:
        if await is_dashboard_ready(page, marker):
            return True
        await asyncio.sleep(1)
    return await is_dashboard_ready(page, marker)


async def is_scope_reachable(page: Page) -> bool:
    try:
        return bool(await page.evaluate(SCOPE_REACHABLE_SCRIPT))
    except Exception:
        return False


async def dismiss_post_login_prompts(page: Page, config: dict[str, Any]) -> bool:
    clicked = await click_first_available(page, config["auth"].get("dismiss_buttons", []))
    if clicked:
        await page.wait_for_timeout(800)
        log_event("auth_prompt_dismissed")
    return clicked


class AlohaSession:
    """One browser process, one context, one page; ``close()`` is always safe."""

    def __init__(
        self,
        credentials: Credentials,
        config: dict[str, Any],
        *,
        artifact_dir: Path | None = None,
    ) -> None:
        self.credentials = credentials
        self.config = config
        self.artifact_dir = artifact_dir
        self.page: Page | None = None
        self.debug_info_reloaded = False
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None
        self._closed = False

    def _timeout(self, key: str) -> float:
        return float(self.config["timeouts"][key])

    async def _fail(self, error_cls: type, detail: str, label: str) -> None:
        diagnostics = await page_diagnostics(self.page)
        await capture_debug_artifacts(self.page, self.artifact_dir, label)
        log_event("session_failed", code=error_cls.code, detail=detail, **diagnostics)
        raise error_cls(detail, diagnostics)

    async def launch(self) -> Page:
        browser_config = self.config["browser"]
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=bool(browser_config.get("headless", True)),
                args=list(browser_config.get("args", [])),
            )
            self._context = await self._browser.new_context(
                viewport=browser_config["viewport"],
                user_agent=browser_config["user_agent"],
            )
            await self._context.add_init_script(
                "Object.defineProperty(navigator, 'webdriver', { get: () => undefined });"
            )
            self.page = await self._context.new_page()
        except PlaywrightError as exc:
            raise SessionLaunchFailed(str(exc)) from exc
        self.page.set_default_timeout(self._timeout("action_sec") * 1000)
        self.page.set_default_navigation_timeout(self._timeout("navigation_sec") * 1000)
        log_event("session_launched", headless=bool(browser_config.get("headless", True)))
        return self.page

    async def _submit_login(self, password_selector: str) -> str:
        page = self.page
        auth = self.config["auth"]
        settle_sec = self._timeout("login_settle_sec")
        login_path = self.config["login_path"]

        async def still_on_login() -> bool:
            if login_path.lower() not in page.url.lower():
                return False
            return await first_usable_locator(page, auth["password_inputs"]) is not None

        if await click_first_available(page, auth["submit_buttons"]):
            await settle(page, settle_sec)
            if not await still_on_login():
                return "click"

        try:
            await page.locator(password_selector).first.press("Enter", timeout=3000)
        except Exception as exc:
            log_event("auth_submit_enter_failed", error=str(exc))
        await settle(page, settle_sec)
        if not await still_on_login():
            return "enter"

        try:
            await page.evaluate(FORM_SUBMIT_SCRIPT, password_selector)
        except PlaywrightError as exc:
            # Navigation tears down the execution context mid-evaluate.
            log_event("auth_form_submit_navigated", error=str(exc))
        await settle(page, settle_sec)
        return "form_submit"

    async def login(self) -> None:
        page = self.page
        if page is None:
            raise SessionLaunchFailed("login() called before launch()")
        auth = self.config["auth"]
        login_url = self.credentials.base_url + self.config["login_path"]

        log_event("auth_start", url=login_url)
        try:
            await page.goto(login_url, wait_until="networkidle", timeout=self._timeout("navigation_sec") * 1000)
        except PlaywrightError as exc:
            log_event("auth_nav_warning", error=str(exc))

        user_selector = await wait_for_first_locator(page, auth["username_inputs"], self._timeout("login_form_sec"))
        pass_selector = await first_usable_locator(page, auth["password_inputs"])
        if not user_selector or not pass_selector:
            await self._fail(LoginFormNotFound, "login inputs never appeared", "login_form_missing")

        await fill_field(page, user_selector, self.credentials.username)
        await fill_field(page, pass_selector, self.credentials.password)
        method = await self._submit_login(pass_selector)
        log_event("auth_submitted", method=method, url=page.url)

        snippet = find_failure_phrase(await visible_text(page), auth.get("failure_phrases", []))
        if snippet:
            await self._fail(AuthenticationRejected, snippet, "auth_rejected")

        await dismiss_post_login_prompts(page, self.config)
        log_event("auth_success", url=page.url)

    async def load_dashboard(self) -> Page:
        page = self.page
        if page is None:
            raise SessionLaunchFailed("load_dashboard() called before launch()")
        marker = self.config["dashboard"]["ready_marker"]
        timeout_sec = self._timeout("dashboard_ready_sec")
        dashboard_url = self.credentials.base_url + self.config["dashboard_path"]

        log_event("dashboard_nav_start", url=dashboard_url)
        try:
            await page.goto(dashboard_url, wait_until="networkidle", timeout=self._timeout("navigation_sec") * 1000)
        except PlaywrightError as exc:
            log_event("dashboard_nav_warning", error=str(exc))

        if not await wait_for_dashboard_ready(page, marker, timeout_sec):
            await self._fail(DashboardTimeout, f"'{marker}' not rendered within {timeout_sec:.0f}s", "dashboard_timeout")

        if not await is_scope_reachable(page):
            # One-time escalation; a second miss is left to the text tier.
            log_event("dashboard_debug_info_reload")
            try:
                await page.evaluate(DEBUG_INFO_RELOAD_SCRIPT)
            except PlaywrightError as exc:
                log_event("dashboard_debug_info_navigated", error=str(exc))
            self.debug_info_reloaded = True
            await settle(page, self._timeout("login_settle_sec"))
            if not await wait_for_dashboard_ready(page, marker, timeout_sec):
                await self._fail(
                    DashboardTimeout,
                    f"'{marker}' not rendered within {timeout_sec:.0f}s after debug-info reload",
                    "dashboard_timeout_debug_reload",
                )

        await dismiss_post_login_prompts(page, self.config)
        log_event("dashboard_ready", url=page.url, debug_info_reloaded=self.debug_info_reloaded)
        return page

    async def open(self) -> Page:
        await self.launch()
        await self.login()
        return await self.load_dashboard()

    async def capture(self, label: str) -> None:
        await capture_debug_artifacts(self.page, self.artifact_dir, label)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for name, resource, closer in (
            ("context", self._context, "close"),
            ("browser", self._browser, "close"),
            ("playwright", self._playwright, "stop"),
        ):
            if resource is None:
                continue
            try:
                await getattr(resource, closer)()
            except Exception as exc:
                log_event("session_close_warning", resource=name, error=str(exc))
        self.page = None
        log_event("session_closed")


@asynccontextmanager
async def open_authenticated_session(
    credentials: Credentials,
    config: dict[str, Any],
    *,
    artifact_dir: Path | None = None,
) -> AsyncIterator[Page]:
    session = AlohaSession(credentials, config, artifact_dir=artifact_dir)
    try:
        yield await session.open()
    finally:
        await session.close()
