import time
from dataclasses import dataclass
from typing import Optional

STREAM_ENDPOINT = "/i/api/1.1/live_video_stream/"
PROVIDER_MARKER = "periscope"


@dataclass(frozen=True)
class StreamInfo:
    stream_url: str
    session_id: str
    share_url: Optional[str] = None


def match_stream_response(url: str, method: str, body) -> Optional[StreamInfo]:
    """Return the stream descriptor if the response is the stream negotiation
    answer for a Space, otherwise None.

    All of: endpoint path in the URL, GET request, a source location served
    by the broadcast provider, and a non-empty sessionId.
    """
    if STREAM_ENDPOINT not in (url or ""):
        return None
    if (method or "").upper() != "GET":
        return None
    if not isinstance(body, dict):
        return None

    source = body.get("source")
    location = source.get("location") if isinstance(source, dict) else None
    if not isinstance(location, str) or PROVIDER_MARKER not in location:
        return None

    session_id = body.get("sessionId")
    if not session_id:
        return None

    return StreamInfo(
        stream_url=location,
        session_id=str(session_id),
        share_url=body.get("shareUrl") or None,
    )


class StreamCapture:
    """Listens to one page's responses for a single join attempt.

    Use as a context manager around the join clicks:

        with StreamCapture(page, timeout=10) as capture:
            join_broadcast(page)
            info = capture.wait()

    The listener is removed on exit, and a finished capture ignores anything
    delivered to it afterwards.
    """

    def __init__(self, page, timeout: float = 10.0, poll_interval: float = 0.25, clock=time.monotonic):
        self.page = page
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._clock = clock
        self._armed = False
        self._finished = False
        self._result: Optional[StreamInfo] = None
        self._deadline = None
        self.timed_out = False

    @property
    def done(self) -> bool:
        return self._finished or self._result is not None

    @property
    def result(self) -> Optional[StreamInfo]:
        return self._result

    def arm(self):
        if self._armed:
            raise RuntimeError("StreamCapture is already armed")
        self._armed = True
        self.page.on("response", self._on_response)
        return self

    def disarm(self):
        self._finished = True
        if not self._armed:
            return
        self._armed = False
        try:
            self.page.remove_listener("response", self._on_response)
        except Exception as e:
            print(f"[WARN] Could not remove response listener: {e}")

    def _on_response(self, response):
        if self.done:
            return
        try:
            url = response.url
            method = response.request.method
            if STREAM_ENDPOINT not in url or method.upper() != "GET":
                return
            body = response.json()
        except Exception as e:
            print(f"[CAPTURE] Failed to read response body: {e}")
            return

        info = match_stream_response(url, method, body)
        if info is None:
            return
        # Decoding may have yielded to another handler that already resolved.
        if self.done:
            return
        self._result = info
        print(f"[CAPTURE] Stream found (sessionId={info.session_id})")

    def wait(self) -> Optional[StreamInfo]:
        if not self._armed and not self.done:
            raise RuntimeError("StreamCapture.wait() called before arm()")

        # The clock starts here, not at arm(): the join clicks in between
        # have their own timeouts.
        self._deadline = self._clock() + self.timeout

        while not self.done:
            remaining = self._deadline - self._clock()
            if remaining <= 0:
                break
            step = min(self.poll_interval, remaining)
            self.page.wait_for_timeout(int(step * 1000))

        if self._result is None and not self.timed_out:
            self.timed_out = True
            print(f"[CAPTURE] Capture timed out after {self.timeout:g}s.")
        self.disarm()
        return self._result

    def __enter__(self):
        return self.arm()

    def __exit__(self, exc_type, exc, tb):
        self.disarm()
        return False
