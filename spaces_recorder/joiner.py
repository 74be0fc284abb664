from playwright.sync_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

LIVE_MARKER = "Listen live"
START_LISTENING = "Start listening"

# First element in document order whose trimmed text is exactly the marker.
_FIRST_MARKER_JS = (
    "(marker) => Array.from(document.querySelectorAll('div'))"
    ".find(node => (node.textContent || '').trim() === marker) || null"
)


def find_live_marker(page):
    """Returns the first 'Listen live' element handle, or None."""
    handle = page.evaluate_handle(_FIRST_MARKER_JS, LIVE_MARKER)
    return handle.as_element() if handle is not None else None


def join_broadcast(page, start_timeout: int = 5000) -> bool:
    """
    Clicks 'Listen live' and then 'Start listening' on a profile page.
    The stream capture must already be armed: the second click is what
    makes the page request the stream.
    Returns False instead of raising on page errors.
    """
    try:
        element = find_live_marker(page)
        if element is None:
            print("[JOIN] Live marker disappeared before it could be clicked.")
            return False

        element.click()
        print(f"[JOIN] Clicked '{LIVE_MARKER}'")

        selector = f'text="{START_LISTENING}"'
        page.wait_for_selector(selector, timeout=start_timeout)
        page.click(selector)
        print(f"[JOIN] Clicked '{START_LISTENING}'")
        return True

    except PlaywrightTimeoutError:
        print(f"[JOIN] '{START_LISTENING}' did not appear within {start_timeout}ms.")
        return False
    except PlaywrightError as e:
        print(f"[JOIN] Page error while joining: {e}")
        return False
