import time
from typing import Callable, List, Optional

from spaces_recorder.poller import SessionError, check_live_spaces, open_browser
from spaces_recorder.recorder import handle_capture


def process_records(records, handler: Callable) -> dict:
    """Hands every record to the handler; one failure does not stop the rest."""
    results = []
    for record in records:
        try:
            outcome = handler(record)
            results.append({'account': record.account, 'success': True, 'result': outcome})
        except Exception as e:
            print(f"[ERROR] Handling capture for {record.account} failed: {e}")
            results.append({'account': record.account, 'success': False, 'error': str(e)})

    succeeded = sum(1 for r in results if r['success'])
    return {'results': results, 'succeeded': succeeded, 'failed': len(results) - succeeded}


def run_pipeline(config: dict, accounts: List[str], handler: Optional[Callable] = None,
                 registry=None, browser_factory=open_browser, clock=time.monotonic) -> dict:
    """
    Checks every account for a live space and hands each capture to the
    handler (by default: save metadata and start recording).
    SessionError is reported and re-raised; everything else is per account.
    """
    if handler is None:
        def handler(record):
            return handle_capture(record, config, registry)

    print(f"Checking {len(accounts)} account(s) for live spaces...")
    try:
        with browser_factory(config) as page:
            records = check_live_spaces(page, accounts, config, clock=clock)
    except SessionError as e:
        print(f"[FATAL] {e}")
        raise

    print(f"Found {len(records)} live space(s).")
    summary = process_records(records, handler)
    summary['records'] = records

    print(f"\nSummary: {summary['succeeded']}/{len(records)} successful")
    for r in summary['results']:
        if r['success']:
            print(f"  OK   {r['account']}")
        else:
            print(f"  FAIL {r['account']}: {r['error']}")
    return summary
