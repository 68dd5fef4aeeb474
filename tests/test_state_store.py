# ==============================================================================
# FILE: tests/test_state_store.py
# DESCRIPTION: Session stores and user config helpers
# ==============================================================================

from adapters.state_store import InMemoryStateStore, JsonFileStateStore
from core.config import write_user_env_vars


def test_in_memory_store():
    store = InMemoryStateStore()

    assert store.get("a") is None
    store.set("b", "2")
    store.set("a", "1")
    assert store.get("a") == "1"
    assert store.keys() == ["a", "b"]
    store.delete("a")
    store.delete("missing")
    assert store.keys() == ["b"]


def test_json_file_store_round_trip(tmp_path):
    store = JsonFileStateStore(tmp_path / "sessions")

    assert store.get("s-1") is None
    store.set("s-1", '{"session_id": "s-1"}')

    assert store.get("s-1").strip() == '{"session_id": "s-1"}'
    assert (tmp_path / "sessions" / "s-1.json").exists()
    assert not list((tmp_path / "sessions").glob("*.tmp"))


def test_json_file_store_sanitizes_keys(tmp_path):
    store = JsonFileStateStore(tmp_path)

    store.set("../../etc/passwd", "{}")

    assert [p.parent for p in tmp_path.rglob("*.json")] == [tmp_path]
    assert store.get("../../etc/passwd").strip() == "{}"


def test_json_file_store_delete(tmp_path):
    store = JsonFileStateStore(tmp_path)
    store.set("s", "{}")

    store.delete("s")
    store.delete("s")

    assert store.get("s") is None


def test_write_user_env_vars_merges(tmp_path):
    env_path = tmp_path / "cfg" / ".env"
    env_path.parent.mkdir()
    env_path.write_text("# old\nPLANCRAFT_CURRENCY='EUR'\nOTHER=1\n", encoding="utf-8")

    write_user_env_vars({"PLANCRAFT_BACKEND_BASE_URL": "https://b.test"}, env_path=env_path)

    lines = env_path.read_text(encoding="utf-8").splitlines()
    assert lines[0].startswith("#")
    assert lines[1:] == ["OTHER=1", "PLANCRAFT_BACKEND_BASE_URL=https://b.test", "PLANCRAFT_CURRENCY=EUR"]
