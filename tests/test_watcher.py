import json

from spaces_recorder import stop_recordings, watcher


def _write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


def test_load_accounts_prefers_config(tmp_path):
    assert watcher.load_accounts({"ACCOUNTS": ["@alice", "bob"]}) == ["@alice", "bob"]


def test_load_accounts_from_following_file(tmp_path):
    _write(tmp_path / "following.json", {"following": ["@alice", "@bob"]})
    assert watcher.load_accounts({}, base_dir=str(tmp_path)) == ["@alice", "@bob"]


def test_load_accounts_missing_file(tmp_path):
    assert watcher.load_accounts({"FOLLOWING_PATH": "nope.json"}, base_dir=str(tmp_path)) == []


def test_main_loop_single_pass(tmp_path, monkeypatch):
    config_path = _write(tmp_path / "config.json", {
        "ACCOUNTS": ["@alice", "@bob"],
        "DOWNLOAD_PATH": str(tmp_path / "downloads"),
    })
    calls = []

    def fake_pipeline(config, accounts, registry=None):
        calls.append(accounts)
        return {"records": [], "results": [], "succeeded": 0, "failed": 0}

    monkeypatch.setattr(watcher, "run_pipeline", fake_pipeline)

    assert watcher.main_loop(config_path, once=True) == 0
    assert calls == [["@alice", "@bob"]]


def test_main_loop_stops_on_session_error(tmp_path, monkeypatch):
    config_path = _write(tmp_path / "config.json", {"ACCOUNTS": ["@alice"], "DOWNLOAD_PATH": str(tmp_path)})

    def fatal(config, accounts, registry=None):
        raise watcher.SessionError("Failed to launch browser")

    monkeypatch.setattr(watcher, "run_pipeline", fatal)
    assert watcher.main_loop(config_path) == 1


def test_main_loop_without_accounts(tmp_path, capsys):
    config_path = _write(tmp_path / "config.json", {})
    assert watcher.main_loop(config_path, once=True) == 1
    assert "No accounts specified" in capsys.readouterr().out


def test_stop_recordings_script(tmp_path, monkeypatch, capsys):
    registry = tmp_path / "recordings.json"
    registry.write_text(json.dumps({"s1": {"pid": 7, "account": "@a"}}), encoding="utf-8")
    config_path = _write(tmp_path / "config.json", {"REGISTRY_PATH": str(registry)})
    killed = []
    monkeypatch.setattr("spaces_recorder.recorder._owns_pid", lambda entry: True)
    monkeypatch.setattr("spaces_recorder.recorder.os.kill", lambda pid, sig: killed.append(pid))

    assert stop_recordings.stop_recordings(config_path) == 1
    assert killed == [7]
    assert "Successfully stopped 1" in capsys.readouterr().out
