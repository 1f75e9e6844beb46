from __future__ import annotations

import threading

import pytest

from users_api.rest import make_server
from users_api.store import UserStore
from users_client import cli


@pytest.fixture
def config(tmp_path):
    store = UserStore()
    store.create("Zed", "zed@x.com")
    store.create("Amy", "amy@x.com")
    server = make_server("127.0.0.1", 0, store)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    host, port = server.server_address[:2]
    cfg = tmp_path / "admin.yaml"
    cfg.write_text(
        f"api_base: http://{host}:{port}\n"
        f"snapshot_path: {tmp_path / 'cache.json'}\n"
        "load_retry_max: 1\n",
        encoding="utf-8",
    )
    try:
        yield str(cfg), store
    finally:
        server.shutdown()
        server.server_close()
        store.close()


def test_list_prints_sorted_page(config, capsys):
    cfg, _ = config
    assert cli.main(["--config", cfg, "list"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert "Amy" in out[1]
    assert "Zed" in out[2]
    assert out[-1].startswith("-- page 1/1, 2 match(es), 2 total")


def test_export_then_import(config, tmp_path, capsys):
    cfg, store = config
    path = tmp_path / "users.csv"
    assert cli.main(["--config", cfg, "export", str(path)]) == 0
    assert path.read_bytes() == b"id,name,email\r\n1,Zed,zed@x.com\r\n2,Amy,amy@x.com\r\n"

    assert cli.main(["--config", cfg, "import", str(path)]) == 0
    assert "created=2 skipped=0 failed=0" in capsys.readouterr().out
    assert len(store.list()) == 4


def test_delete_single_and_many(config, capsys):
    cfg, store = config
    store.create("Cy", "cy@x.com")
    assert cli.main(["--config", cfg, "delete", "1"]) == 0
    assert "[info] User deleted" in capsys.readouterr().out
    assert cli.main(["--config", cfg, "delete", "2", "3"]) == 0
    assert "Deleted 2 user(s)" in capsys.readouterr().out
    assert store.list() == []


def test_unreachable_server_exits_nonzero(tmp_path, capsys):
    cfg = tmp_path / "admin.yaml"
    cfg.write_text(
        "api_base: http://127.0.0.1:9\n"
        f"snapshot_path: {tmp_path / 'none.json'}\n"
        "load_retry_max: 1\n"
        "api_timeout_s: 1\n",
        encoding="utf-8",
    )
    assert cli.main(["--config", str(cfg), "list"]) == 2
    assert "Failed to load" in capsys.readouterr().err


def test_export_filtered_view(config, tmp_path, capsys):
    cfg, _ = config
    path = tmp_path / "amy.csv"
    assert cli.main(["--config", cfg, "export", str(path), "-q", "amy"]) == 0
    assert path.read_bytes() == b"id,name,email\r\n2,Amy,amy@x.com\r\n"
    assert "Wrote 1 record(s)" in capsys.readouterr().out

    assert cli.main(["--config", cfg, "export", str(path), "--sort", "name", "--desc"]) == 0
    assert path.read_bytes() == b"id,name,email\r\n1,Zed,zed@x.com\r\n2,Amy,amy@x.com\r\n"


def test_watch_stops_after_seconds(config, capsys):
    cfg, _ = config
    with open(cfg, "a", encoding="utf-8") as f:
        f.write("live_updates: 'no'\n")
    assert cli.main(["--config", cfg, "watch", "--seconds", "0.3", "--interval", "0.05"]) == 0
    out = capsys.readouterr().out
    assert out.count("-- page 1/1, 2 match(es), 2 total") == 1
