import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, List, Optional

from playwright.sync_api import Error as PlaywrightError, sync_playwright

from spaces_recorder.interceptor import StreamCapture
from spaces_recorder.joiner import LIVE_MARKER, join_broadcast

SITE_ROOT = "https://x.com"

_COUNT_MARKERS_JS = "(divs, marker) => divs.filter(d => (d.textContent || '').trim() === marker).length"


class SessionError(RuntimeError):
    """The browser session is unusable; the whole run has to stop."""


@dataclass(frozen=True)
class CaptureRecord:
    account: str
    stream_url: str
    session_id: str
    share_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "account": self.account,
            "hlsUrl": self.stream_url,
            "sessionId": self.session_id,
            "shareUrl": self.share_url,
        }


def account_path(account: str) -> str:
    return account[1:] if account.startswith("@") else account


def profile_url(site_root: str, account: str) -> str:
    return f"{site_root.rstrip('/')}/{account_path(account)}"


def count_live_markers(page) -> int:
    return page.eval_on_selector_all("div", _COUNT_MARKERS_JS, LIVE_MARKER)


def wait_for_live_marker(page, settle_seconds: float = 3, interval: float = 0.5, clock=time.monotonic) -> bool:
    """
    Polls the rendered page for the live marker until it shows up or the
    settle window runs out.

    The profile renders client-side and exposes no "done" signal, so a page
    without the marker is only called offline after the full window. A slow
    render can still be misread as offline.
    """
    deadline = clock() + settle_seconds
    while True:
        try:
            if count_live_markers(page) > 0:
                return True
        except PlaywrightError:
            # Execution context may be replaced while the page is still loading.
            if page.is_closed():
                raise
        remaining = deadline - clock()
        if remaining <= 0:
            return False
        page.wait_for_timeout(int(min(interval, remaining) * 1000))


def poll_account(page, account: str, config: dict, clock=time.monotonic) -> Optional[CaptureRecord]:
    """Navigate, classify and, when live, join and capture one account."""
    url = profile_url(config.get("SITE_ROOT", SITE_ROOT), account)
    page.goto(url, wait_until="domcontentloaded", timeout=int(config.get("NAVIGATION_TIMEOUT_MS", 30000)))

    if not wait_for_live_marker(page, float(config.get("SETTLE_SECONDS", 3)), clock=clock):
        print(f"[OFFLINE] No live space for {account}")
        return None

    print(f"[LIVE] Live space found for {account}")
    capture = StreamCapture(page, timeout=float(config.get("CAPTURE_TIMEOUT_SECONDS", 10)), clock=clock)
    with capture:
        if not join_broadcast(page, int(config.get("START_LISTENING_TIMEOUT_MS", 5000))):
            print(f"[WARN] Could not join the live space for {account}. Skipping.")
            return None
        info = capture.wait()

    if info is None:
        print(f"[WARN] Found live marker for {account} but capture failed.")
        return None

    return CaptureRecord(
        account=account,
        stream_url=info.stream_url,
        session_id=info.session_id,
        share_url=info.share_url,
    )


def check_live_spaces(page, accounts: List[str], config: dict, clock=time.monotonic) -> List[CaptureRecord]:
    """One sequential pass over the accounts. Returns records in account order."""
    records = []
    for account in accounts:
        try:
            record = poll_account(page, account, config, clock=clock)
        except PlaywrightError as e:
            if page.is_closed():
                raise SessionError(f"Browser page closed while checking {account}: {e}") from e
            print(f"[ERROR] Page error for {account}: {e}. Skipping.")
            continue
        except Exception as e:
            print(f"[ERROR] Unexpected error for {account}: {e}. Skipping.")
            continue

        if record is not None:
            records.append(record)
    return records


@contextmanager
def open_browser(config: dict):
    """
    Launches Chromium and yields a single page. The browser is closed on
    every exit path.

    With USER_DATA_DIR set, a persistent profile is used (an already
    logged-in Chrome profile). Otherwise a fresh context is created, loading
    SESSION_PATH as storage state when the file exists.
    """
    headless = bool(config.get("HEADLESS", False))
    channel = config.get("BROWSER_CHANNEL")
    user_data_dir = config.get("USER_DATA_DIR")
    session_path = config.get("SESSION_PATH")

    try:
        p = sync_playwright().start()
    except (PlaywrightError, OSError) as e:
        raise SessionError(f"Failed to start Playwright: {e}") from e

    try:
        browser = None
        try:
            if user_data_dir:
                browser = p.chromium.launch_persistent_context(
                    user_data_dir, channel=channel, headless=headless, no_viewport=True,
                )
                context = browser
            else:
                browser = p.chromium.launch(channel=channel, headless=headless, args=['--no-sandbox'])
                if session_path and os.path.exists(session_path):
                    context = browser.new_context(storage_state=session_path)
                else:
                    context = browser.new_context()
            page = context.new_page()
        except PlaywrightError as e:
            if browser is not None:
                browser.close()
            raise SessionError(f"Failed to launch browser: {e}") from e

        try:
            yield page
        finally:
            try:
                browser.close()
            except PlaywrightError as e:
                print(f"[WARN] Error while closing browser: {e}")
    finally:
        p.stop()
