# tests/test_session.py
"""Tests for Session (user data + scene state) and the session stores"""
import json

import pytest

from relaybot.core.engine.domain import IDLE, Idle, InScene, Session
from relaybot.infra.file_session_store import FileSessionStore
from relaybot.infra.memory_session_store import MemorySessionStore


class TestSession:
    def test_starts_idle_and_empty(self):
        session = Session()
        assert session.state == IDLE
        assert session.in_scene() is False
        assert session.scene_name is None
        assert session.step is None
        assert len(session) == 0

    def test_reserved_keys_rejected(self):
        session = Session()
        with pytest.raises(ValueError):
            session["__scene"] = "x"
        with pytest.raises(ValueError):
            session["step"] = 1

    def test_state_type_is_checked(self):
        session = Session()
        with pytest.raises(TypeError):
            session.state = "registration"

    def test_clear_resets_data_and_state(self):
        session = Session({"name": "Ada"}, InScene("reg", 2))
        session.clear()
        assert dict(session) == {}
        assert isinstance(session.state, Idle)


class TestSessionMapping:
    def test_scene_keys_written_together(self):
        session = Session({"name": "Ada"}, InScene("reg", 1))
        assert session.to_mapping() == {"name": "Ada", "__scene": "reg", "step": 1}

    def test_idle_writes_no_scene_keys(self):
        assert Session({"name": "Ada"}).to_mapping() == {"name": "Ada"}

    def test_from_mapping(self):
        session = Session.from_mapping({"name": "Ada", "__scene": "reg", "step": 2})
        assert session.state == InScene("reg", 2)
        assert dict(session) == {"name": "Ada"}

    def test_stray_step_is_dropped(self):
        session = Session.from_mapping({"step": 3, "name": "Ada"})
        assert session.state == IDLE
        assert session.to_mapping() == {"name": "Ada"}

    @pytest.mark.parametrize("step", [None, "2", -1, True])
    def test_scene_without_usable_step_resumes_at_zero(self, step):
        raw = {"__scene": "reg"}
        if step is not None:
            raw["step"] = step
        assert Session.from_mapping(raw).state == InScene("reg", 0)

    def test_empty_or_missing_mapping(self):
        assert Session.from_mapping(None).to_mapping() == {}
        assert Session.from_mapping({}).to_mapping() == {}


class TestMemorySessionStore:
    @pytest.mark.asyncio
    async def test_unknown_id_is_empty(self):
        store = MemorySessionStore()
        assert await store.get("nobody") == {}

    @pytest.mark.asyncio
    async def test_get_returns_what_was_set(self):
        store = MemorySessionStore()
        state = {"name": "Ada", "tags": ["a", "b"], "__scene": "reg", "step": 1}
        await store.set("1", state)
        assert await store.get("1") == state

    @pytest.mark.asyncio
    async def test_stored_value_is_isolated_from_callers(self):
        store = MemorySessionStore()
        state = {"tags": ["a"]}
        await store.set("1", state)
        state["tags"].append("b")

        loaded = await store.get("1")
        loaded["tags"].append("c")

        assert await store.get("1") == {"tags": ["a"]}

    @pytest.mark.asyncio
    async def test_clear(self):
        store = MemorySessionStore()
        await store.set("1", {"a": 1})
        await store.clear("1")
        await store.clear("never-set")
        assert await store.get("1") == {}


class TestFileSessionStore:
    @pytest.mark.asyncio
    async def test_creates_file(self, tmp_path):
        path = tmp_path / "nested" / "sessions.json"
        FileSessionStore(path)
        assert json.loads(path.read_text()) == {}

    @pytest.mark.asyncio
    async def test_round_trip_and_persistence(self, tmp_path):
        path = tmp_path / "sessions.json"
        store = FileSessionStore(path)
        state = {"name": "Ada", "nested": {"n": 1}, "__scene": "reg", "step": 2}
        await store.set("1", state)

        assert await store.get("1") == state
        # A second instance reads what the first wrote
        assert await FileSessionStore(path).get("1") == state

    @pytest.mark.asyncio
    async def test_keeps_other_sessions(self, tmp_path):
        store = FileSessionStore(tmp_path / "sessions.json")
        await store.set("1", {"a": 1})
        await store.set("2", {"b": 2})
        await store.clear("1")
        assert await store.get("1") == {}
        assert await store.get("2") == {"b": 2}

    @pytest.mark.asyncio
    async def test_existing_file_is_not_overwritten(self, tmp_path):
        path = tmp_path / "sessions.json"
        path.write_text(json.dumps({"7": {"x": True}}))
        assert await FileSessionStore(path).get("7") == {"x": True}

    @pytest.mark.asyncio
    async def test_no_temp_files_left_behind(self, tmp_path):
        store = FileSessionStore(tmp_path / "sessions.json")
        await store.set("1", {"a": 1})
        assert [p.name for p in tmp_path.iterdir()] == ["sessions.json"]
