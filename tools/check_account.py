#!/usr/bin/env python3
import os, sys

from spaces_recorder.poller import check_live_spaces, open_browser
from spaces_recorder.watcher import CONFIG_PATH, load_accounts, load_config

if __name__ == '__main__':
    cfg = load_config(CONFIG_PATH) if os.path.exists(CONFIG_PATH) else {}
    targets = load_accounts(cfg, base_dir=os.path.dirname(CONFIG_PATH))
    # allow account override via argv
    if len(sys.argv) > 1:
        targets = [sys.argv[1]]
    if not targets:
        print('Usage: check_account.py <@account>')
        sys.exit(1)
    with open_browser(cfg) as page:
        records = check_live_spaces(page, targets, cfg)
    for rec in records:
        print('LIVE:', rec.account, rec.to_dict())
    if not records:
        print('No live spaces found among targets')
