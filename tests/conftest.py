from contextlib import contextmanager
from types import SimpleNamespace

import pytest
from playwright.sync_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

STREAM_API = "https://x.com/i/api/1.1/live_video_stream/status/1vOxwdZPLQLKB"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeResponse:
    def __init__(self, url=STREAM_API, method="GET", body=None, error=None):
        self.url = url
        self.request = SimpleNamespace(method=method)
        self._body = body
        self._error = error

    def json(self):
        if self._error is not None:
            raise self._error
        return self._body


def stream_response(location="https://prod-fastly.pscp.tv/periscope/x.m3u8", session_id="abc123",
                    share_url="https://x.com/s/1", **kwargs):
    body = {"source": {"location": location}}
    if session_id is not None:
        body["sessionId"] = session_id
    if share_url is not None:
        body["shareUrl"] = share_url
    return FakeResponse(body=body, **kwargs)


class FakeElement:
    def __init__(self, page):
        self.page = page
        self.clicks = 0

    def click(self):
        self.clicks += 1
        self.page.events.append("click:listen-live")


class FakeHandle:
    def __init__(self, element):
        self._element = element

    def as_element(self):
        return self._element


class Profile:
    """How one fake profile page behaves."""

    def __init__(self, markers=0, clickable=True, start_listening=True, responses=(),
                 render_delay=0.0, goto_error=None, start_delay=0.0):
        self.markers = markers
        self.clickable = clickable
        self.start_listening = start_listening
        self.responses = list(responses)  # (delay seconds after 'Start listening', response)
        self.render_delay = render_delay
        self.goto_error = goto_error
        self.start_delay = start_delay  # seconds before "Start listening" shows up


class FakePage:
    def __init__(self, clock=None, profiles=None):
        self.clock = clock or FakeClock()
        self.profiles = profiles or {}
        self.profile = Profile()
        self.listeners = []
        self.events = []
        self.visited = []
        self.pending = []
        self.closed = False
        self._loaded_at = 0.0

    # navigation / DOM
    def goto(self, url, wait_until=None, timeout=None):
        self.visited.append(url)
        self.events.append(f"goto:{url}")
        self.profile = self.profiles.get(url, Profile())
        self.pending = []
        self._loaded_at = self.clock.now
        if self.profile.goto_error is not None:
            raise self.profile.goto_error

    def _rendered_markers(self):
        if self.clock.now - self._loaded_at < self.profile.render_delay:
            return 0
        return self.profile.markers

    def eval_on_selector_all(self, selector, expression, arg=None):
        if self.closed:
            raise PlaywrightError("Target page, context or browser has been closed")
        return self._rendered_markers()

    def evaluate_handle(self, expression, arg=None):
        if self._rendered_markers() and self.profile.clickable:
            return FakeHandle(FakeElement(self))
        return FakeHandle(None)

    def wait_for_selector(self, selector, timeout=None):
        if not self.profile.start_listening:
            self.clock.advance((timeout or 0) / 1000)
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")
        self.clock.advance(self.profile.start_delay)
        self.events.append("wait:start-listening")

    def click(self, selector, timeout=None):
        self.events.append("click:start-listening")
        for delay, response in self.profile.responses:
            self.schedule(delay, response)

    def wait_for_timeout(self, ms):
        self.clock.advance(ms / 1000)
        due = [p for p in self.pending if p[0] <= self.clock.now]
        self.pending = [p for p in self.pending if p[0] > self.clock.now]
        for _, response in due:
            self.emit(response)

    # events
    def on(self, event, handler):
        self.events.append(f"on:{event}")
        self.listeners.append(handler)

    def remove_listener(self, event, handler):
        self.events.append(f"off:{event}")
        self.listeners.remove(handler)

    def schedule(self, delay, response):
        self.pending.append((self.clock.now + delay, response))

    def emit(self, response):
        for handler in list(self.listeners):
            handler(response)

    def is_closed(self):
        return self.closed


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def page(clock):
    return FakePage(clock=clock)


@pytest.fixture
def fake_browser():
    """Browser factory yielding a prepared FakePage; records when it was closed."""
    state = SimpleNamespace(page=None, closed=False)

    @contextmanager
    def factory(config):
        try:
            yield state.page
        finally:
            state.closed = True

    state.factory = factory
    return state
