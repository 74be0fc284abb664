import os
import sys
import json
import time
import datetime

from spaces_recorder.pipeline import run_pipeline
from spaces_recorder.poller import SessionError
from spaces_recorder.recorder import ProcessRegistry

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
CONFIG_PATH = os.path.join(BASE_DIR, 'config', 'config.json')


def load_config(config_path):
    """Loads the configuration from config.json."""
    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_accounts(config, base_dir=None):
    """
    Accounts come from ACCOUNTS in the config, or from a following file
    shaped like {"following": ["@name", ...]}.
    """
    accounts = config.get("ACCOUNTS") or []
    if accounts:
        return list(accounts)

    following_path = config.get("FOLLOWING_PATH", "following.json")
    if base_dir and not os.path.isabs(following_path):
        following_path = os.path.join(base_dir, following_path)
    if not os.path.exists(following_path):
        return []
    with open(following_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return list(data.get("following", []))


def registry_path(config):
    return config.get("REGISTRY_PATH") or os.path.join(config.get("DOWNLOAD_PATH", "downloads"), "recordings.json")


def main_loop(config_path=CONFIG_PATH, once=False):
    """Checks the accounts for live spaces every POLLING_INTERVAL_SECONDS."""
    if not os.path.exists(config_path):
        print(f"Error: Config file not found at {config_path}.")
        return 1
    config = load_config(config_path)

    accounts = load_accounts(config, base_dir=os.path.dirname(os.path.abspath(config_path)))
    if not accounts:
        print("No accounts specified in config.json or the following file. Watcher will exit.")
        return 1

    polling_interval = int(config.get("POLLING_INTERVAL_SECONDS", 60))
    registry = ProcessRegistry(registry_path(config))
    print(f"Watcher started. Monitoring {len(accounts)} account(s)...")

    while True:
        now = datetime.datetime.now()
        print(f"\n[{now.strftime('%Y-%m-%d %H:%M:%S')}] Checking status...")

        registry.prune()

        try:
            summary = run_pipeline(config, accounts, registry=registry)
        except SessionError:
            return 1

        if registry.entries:
            recording_names = [e.get('account') for e in registry.entries.values()]
            print(f"Currently recording: {recording_names}")
        else:
            print("No accounts are currently being recorded.")

        if once:
            return 0 if summary['failed'] == 0 else 1

        print(f"Check complete. Waiting for {polling_interval} seconds.")
        time.sleep(polling_interval)


if __name__ == "__main__":
    sys.exit(main_loop(once="--once" in sys.argv[1:]))
