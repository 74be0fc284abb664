#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import os
import re
import json
import signal
import datetime as _dt
import subprocess
from pathlib import Path
from typing import Dict, Optional

import requests

UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)
SITE_ORIGIN = "https://x.com"


def _sanitize_name(name: str) -> str:
    if not name:
        return "unknown"
    return re.sub(r"[^\w-]", "", name).strip() or "unknown"


def _now_ts() -> str:
    return _dt.datetime.now().strftime("%Y%m%d_%H%M%S")


def _headers() -> Dict[str, str]:
    return {
        'User-Agent': UA,
        'Origin': SITE_ORIGIN,
        'Referer': f'{SITE_ORIGIN}/',
        'Accept': 'application/vnd.apple.mpegurl,application/x-mpegURL,*/*',
    }


def build_output_basename(record) -> str:
    account = _sanitize_name(record.account.lstrip("@"))
    session_id = _sanitize_name(record.session_id or "session")
    return f"{account}_{session_id}_{_now_ts()}"


def _fetch_playlist(stream_url: str) -> Optional[str]:
    try:
        r = requests.get(stream_url, headers=_headers(), timeout=8)
        if not r.ok:
            print(f"[WARN] Playlist fetch returned HTTP {r.status_code} for {stream_url}")
            return None
        return r.text
    except requests.exceptions.RequestException as e:
        print(f"[WARN] Playlist fetch failed: {e}")
        return None


def save_capture(record, download_dir, playlist: bool = True, basename: Optional[str] = None) -> dict:
    """Writes <basename>.meta.json and, if it can be fetched, <basename>.m3u8."""
    out_dir = Path(download_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    basename = basename or build_output_basename(record)

    meta = dict(record.to_dict())
    meta['capturedAt'] = _dt.datetime.now().isoformat(timespec='seconds')

    playlist_path = None
    if playlist:
        text = _fetch_playlist(record.stream_url)
        if text is not None:
            playlist_path = out_dir / f"{basename}.m3u8"
            playlist_path.write_text(text, encoding='utf-8')
    meta['playlist'] = str(playlist_path) if playlist_path else None

    meta_path = out_dir / f"{basename}.meta.json"
    with open(meta_path, 'w', encoding='utf-8') as f:
        json.dump(meta, f, ensure_ascii=False, indent=2)

    return {'meta': str(meta_path), 'playlist': meta['playlist'], 'basename': basename}


def start_recording(record, config: Optional[dict] = None, basename: Optional[str] = None):
    """Starts ffmpeg on the HLS URL in the background. Returns info dict or None."""
    try:
        if not record.stream_url:
            print(f"[ERROR] Stream URL missing for {record.account}.")
            return None

        out_dir = Path((config or {}).get('DOWNLOAD_PATH', 'downloads'))
        out_dir.mkdir(parents=True, exist_ok=True)

        day_dir = _dt.datetime.now().strftime('%Y%m%d')
        log_dir = Path((config or {}).get('LOG_DIR', out_dir / 'logs')) / day_dir
        log_dir.mkdir(parents=True, exist_ok=True)

        basename = basename or build_output_basename(record)
        out_path = out_dir / f"{basename}.mp3"

        cmd = [
            (config or {}).get('FFMPEG_PATH', 'ffmpeg'),
            '-i', record.stream_url,
            '-c:a', 'libmp3lame',
            '-q:a', '2',
            str(out_path),
        ]
        with open(str(log_dir / f"{basename}_ffmpeg.log"), 'a', encoding='utf-8') as perlog:
            proc = subprocess.Popen(cmd, stdout=perlog, stderr=perlog, stdin=subprocess.DEVNULL)
        print(f"[REC] Start -> {out_path} (PID: {proc.pid})")
        return {
            'process': proc,
            'output': str(out_path),
            'account': record.account,
            'session_id': record.session_id,
            'timestamp': _now_ts(),
            'log_dir': str(log_dir),
        }

    except OSError as e:
        print(f"[ERROR] Could not start ffmpeg for {record.account}: {e}")
        return None


class ProcessRegistry:
    """
    Session id -> running recording, persisted as JSON so a separate
    process can stop the recordings later.

    Processes started by this process are kept as Popen objects and checked
    with poll(), which also reaps them. Entries loaded from disk only have a
    pid, checked against the recorded output path when /proc is available.
    """

    def __init__(self, path):
        self.path = Path(path)
        self.entries = self._load()
        self.processes = {}

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            print(f"[WARN] Could not read recording registry {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def save(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump(self.entries, f, ensure_ascii=False, indent=2)

    def register(self, session_id: str, info: dict):
        self.processes[session_id] = info['process']
        self.entries[session_id] = {
            'pid': info['process'].pid,
            'account': info.get('account'),
            'output': info.get('output'),
            'started': info.get('timestamp'),
        }
        self.save()

    def unregister(self, session_id: str):
        self.processes.pop(session_id, None)
        if self.entries.pop(session_id, None) is not None:
            self.save()

    def _alive(self, session_id: str, entry: dict) -> bool:
        proc = self.processes.get(session_id)
        if proc is not None:
            return proc.poll() is None
        return _owns_pid(entry)

    def is_recording(self, session_id: str) -> bool:
        entry = self.entries.get(session_id)
        return bool(entry) and self._alive(session_id, entry)

    def prune(self) -> int:
        dead = [sid for sid, e in self.entries.items() if not self._alive(sid, e)]
        for sid in dead:
            print(f"! Recording for '{self.entries[sid].get('account')}' ({sid}) found dead. Cleaning up.")
            del self.entries[sid]
            self.processes.pop(sid, None)
        if dead:
            self.save()
        return len(dead)

    def stop_all(self) -> int:
        # Stale pids may already belong to unrelated processes.
        self.prune()
        stopped = 0
        for session_id, entry in list(self.entries.items()):
            pid = entry.get('pid')
            proc = self.processes.get(session_id)
            try:
                if proc is not None:
                    proc.terminate()
                else:
                    os.kill(int(pid), signal.SIGTERM)
                stopped += 1
                print(f"[STOP] Terminated recording for '{entry.get('account')}' (PID: {pid})")
            except ProcessLookupError:
                print(f"[STOP] Recording for '{entry.get('account')}' (PID: {pid}) was not running.")
            except (TypeError, ValueError, PermissionError) as e:
                print(f"[STOP] Could not stop PID {pid}: {e}")
        self.entries = {}
        self.processes = {}
        self.save()
        return stopped


def _pid_alive(pid) -> bool:
    try:
        os.kill(int(pid), 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except (TypeError, ValueError):
        return False
    return True


def _read_cmdline(pid) -> Optional[str]:
    try:
        raw = Path(f"/proc/{int(pid)}/cmdline").read_bytes()
    except (OSError, TypeError, ValueError):
        return None
    return raw.replace(b"\0", b" ").decode("utf-8", "replace")


def _owns_pid(entry: dict) -> bool:
    """True if the entry's pid is alive and still runs the recording it was saved for."""
    pid = entry.get('pid')
    if not _pid_alive(pid):
        return False
    output = entry.get('output')
    cmdline = _read_cmdline(pid)
    if not output or cmdline is None:
        return True
    return output in cmdline


def handle_capture(record, config: dict, registry: Optional[ProcessRegistry] = None) -> dict:
    """
    Persists one capture and, when RECORD_AUDIO is on, starts the recording.
    Raises RuntimeError if the recording was requested but could not start.
    """
    if registry is not None and registry.is_recording(record.session_id):
        print(f"[REC] {record.account} ({record.session_id}) is already being recorded.")
        return {'account': record.account, 'skipped': True}

    download_dir = config.get('DOWNLOAD_PATH', 'downloads')
    basename = build_output_basename(record)
    saved = save_capture(record, download_dir, playlist=bool(config.get('SAVE_PLAYLIST', True)), basename=basename)
    result = {'account': record.account, 'meta': saved['meta'], 'playlist': saved['playlist']}

    if not config.get('RECORD_AUDIO', True):
        return result

    started = start_recording(record, config, basename=basename)
    if not started or not started.get('process'):
        raise RuntimeError(f"Failed to start recording for {record.account}")
    if registry is not None:
        registry.register(record.session_id, started)
    result['output'] = started['output']
    result['pid'] = started['process'].pid
    return result
