import json

import pytest

from events import STORE_CHANGED
from store import FileBackend, MemoryBackend, Store


def _players():
    return [{"name": "Ann", "palette": "spring"}, {"name": "Bob", "palette": "summer"}]


def test_save_then_load_returns_equal_copy(store: Store) -> None:
    assert store.save("players", _players()) is True

    loaded = store.load("players")
    assert loaded == _players()
    loaded[0]["name"] = "Mallory"
    assert store.load("players")[0]["name"] == "Ann"


def test_keys_are_versioned_and_wrapped_in_envelope() -> None:
    backend = MemoryBackend()
    store = Store(backend, debounce_ms=0, clock=lambda: 12.5)
    store.save("scores", {"Ann": 10})

    assert backend.keys() == ["game_scores_v1.2"]
    env = json.loads(backend.get("game_scores_v1.2"))
    assert env == {"timestamp": 12500, "version": "1.2", "type": "scores", "data": {"Ann": 10}}
    assert store.type_for_key("game_scores_v1.2") == "scores"
    assert store.type_for_key("game_scores_v1.1") is None


def test_invalid_payload_rejected_and_cache_evicted(store: Store) -> None:
    store.save("scores", {"Ann": 3})
    assert store.save("scores", {"Ann": "lots"}) is False
    # cache was evicted; the backend still holds the last good value
    assert store.load("scores") == {"Ann": 3}


def test_invalid_stored_payload_loads_as_none() -> None:
    backend = MemoryBackend()
    backend.set("game_finishedPlayers_v1.2", json.dumps({"version": "1.2", "data": ["Ann", "Ann"]}))
    store = Store(backend, debounce_ms=0)
    assert store.load("finishedPlayers") is None


def test_corrupt_and_missing_records_load_as_none() -> None:
    backend = MemoryBackend()
    backend.set("game_scores_v1.2", "{not json")
    store = Store(backend, debounce_ms=0)
    assert store.load("scores") is None
    assert store.load("players") is None


def test_version_mismatch_still_loads() -> None:
    backend = MemoryBackend()
    backend.set("game_scores_v1.2", json.dumps({"version": "1.0", "data": {"Ann": 1}}))
    assert Store(backend, debounce_ms=0).load("scores") == {"Ann": 1}


def test_missing_type_raises_value_error(store: Store) -> None:
    with pytest.raises(ValueError):
        store.save("", {})
    with pytest.raises(ValueError):
        store.load("")
    with pytest.raises(ValueError):
        store.clear("")


def test_unvalidated_types_are_accepted(store: Store) -> None:
    assert store.save("uiPrefs", {"theme": "dark"}) is True
    assert store.load("uiPrefs") == {"theme": "dark"}


def test_register_validator(store: Store) -> None:
    store.register_validator("uiPrefs", lambda d: isinstance(d, dict) and "theme" in d)
    assert store.save("uiPrefs", {}) is False


def test_clear_and_clear_all_notify_with_none(store: Store) -> None:
    seen = []
    store.subscribe(lambda e: seen.append((e.data["record_type"], e.data["value"])))
    store.save("scores", {"Ann": 1})
    store.save("visitHistory", {"Ann-X": 1})

    assert store.clear("scores") is True
    assert store.load("scores") is None
    store.clear_all()

    assert ("scores", None) in seen
    assert ("visitHistory", None) in seen
    assert store.stored_types() == []


def test_subscribers_receive_the_saved_value(store: Store) -> None:
    seen = []
    store.bus.subscribe(STORE_CHANGED, seen.append)
    store.save("scores", {"Ann": 5})
    assert seen[-1].data == {"record_type": "scores", "value": {"Ann": 5}}


def test_debounced_notifications_deliver_only_the_last_value() -> None:
    store = Store(MemoryBackend(), debounce_ms=10_000)
    seen = []
    store.subscribe(lambda e: seen.append(e.data["value"]))

    store.save("scores", {"Ann": 1})
    store.save("scores", {"Ann": 2})
    store.save("scores", {"Ann": 3})
    assert seen == []

    store.flush_notifications()
    assert seen == [{"Ann": 3}]


def test_failing_subscriber_does_not_block_others(store: Store) -> None:
    seen = []

    def broken(_event):
        raise RuntimeError("boom")

    store.subscribe(broken)
    store.subscribe(lambda e: seen.append(e.data["record_type"]))
    assert store.save("scores", {"Ann": 1}) is True
    assert seen == ["scores"]


def test_storage_full_drops_non_essential_records_and_retries() -> None:
    backend = MemoryBackend(capacity=400)
    store = Store(backend, debounce_ms=0)
    assert store.save("visitHistory", {f"Ann-SPACE-{i}": i for i in range(8)})
    assert store.save("players", _players())

    big = [{"name": f"Player {i}", "palette": "spring"} for i in range(3)]
    assert store.save("players", big) is True
    assert store.load("visitHistory") is None
    assert store.load("players") == big


def test_storage_full_without_anything_to_drop_fails() -> None:
    store = Store(MemoryBackend(capacity=50), debounce_ms=0)
    assert store.save("players", _players()) is False
    assert store.load("players") is None


def test_save_many_is_all_or_nothing(store: Store) -> None:
    store.save("scores", {"Ann": 1})

    ok = store.save_many({"scores": {"Ann": 2}, "finishedPlayers": ["Ann", "Ann"]})
    assert ok is False
    assert store.load("scores") == {"Ann": 1}
    assert store.load("finishedPlayers") is None


def test_save_many_rolls_back_written_keys_on_write_failure() -> None:
    class FailingBackend(MemoryBackend):
        def set(self, key, raw):
            if "finishedPlayers" in key:
                raise OSError("disk gone")
            super().set(key, raw)

    backend = FailingBackend()
    store = Store(backend, debounce_ms=0)
    store.save("scores", {"Ann": 1})

    assert store.save_many({"scores": {"Ann": 9}, "finishedPlayers": ["Ann"]}) is False
    assert json.loads(backend.get("game_scores_v1.2"))["data"] == {"Ann": 1}
    assert store.load("scores") == {"Ann": 1}


def test_export_and_import_round_trip() -> None:
    src = Store(MemoryBackend(), debounce_ms=0)
    src.save("players", _players())
    src.save("scores", {"Ann": 7})
    snapshot = src.export_state()

    assert snapshot["version"] == "1.2"
    assert set(snapshot["records"]) == {"players", "scores"}

    dst = Store(MemoryBackend(), debounce_ms=0)
    assert dst.import_state(snapshot) is True
    assert dst.load("scores") == {"Ann": 7}
    assert dst.import_state({"records": "nope"}) is False


def test_is_new_game(store: Store) -> None:
    assert store.is_new_game() is True
    store.save("players", _players())
    assert store.is_new_game() is True


def test_cleanup_old_versions_only_touches_our_prefix() -> None:
    backend = MemoryBackend()
    backend.set("game_players_v1.1", "{}")
    backend.set("game_scores_v1.0", "{}")
    backend.set("other_app_key", "{}")
    store = Store(backend, debounce_ms=0)
    store.save("scores", {"Ann": 1})

    assert store.cleanup_old_versions() == 2
    assert sorted(backend.keys()) == ["game_scores_v1.2", "other_app_key"]


def test_receive_external_change_is_validated(store: Store) -> None:
    store.save("scores", {"Ann": 1})
    good = json.dumps({"version": "1.2", "data": {"Ann": 4}})
    bad = json.dumps({"version": "1.2", "data": {"Ann": "x"}})

    assert store.receive_external_change("game_scores_v1.2", good) is True
    assert store.load("scores") == {"Ann": 4}
    assert store.receive_external_change("game_scores_v1.2", bad) is False
    assert store.receive_external_change("unrelated", good) is False


def test_file_backend_persists_between_stores(tmp_path) -> None:
    first = Store(FileBackend(tmp_path), debounce_ms=0)
    first.save("players", _players())

    second = Store(FileBackend(tmp_path), debounce_ms=0)
    assert second.load("players") == _players()
    assert (tmp_path / "game_players_v1.2.json").exists()
    second.clear("players")
    assert not (tmp_path / "game_players_v1.2.json").exists()
