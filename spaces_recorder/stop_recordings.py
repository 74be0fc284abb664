import os
import sys

from spaces_recorder.recorder import ProcessRegistry
from spaces_recorder.watcher import CONFIG_PATH, load_config, registry_path


def stop_recordings(config_path=CONFIG_PATH):
    config = load_config(config_path) if os.path.exists(config_path) else {}
    print("Stopping all active recordings...")
    stopped = ProcessRegistry(registry_path(config)).stop_all()
    if stopped > 0:
        print(f"Successfully stopped {stopped} recording process(es).")
    else:
        print("No active recordings were found or stopped.")
    return stopped


if __name__ == "__main__":
    stop_recordings(sys.argv[1] if len(sys.argv) > 1 else CONFIG_PATH)
