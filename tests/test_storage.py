"""
ConversationStore 属性测试和单元测试
"""
import json
from datetime import datetime, timedelta

import pytest
from hypothesis import given, strategies as st, settings, HealthCheck

from comm_assistant.models import (
    AnalysisResult, AppSettings, CommunicationMode, ConversationData, Message,
    OverallTone, Sentiment, StorageConfig, ToneAnalysis,
)
from comm_assistant.storage import (
    CACHE_KEY, CONVERSATIONS_KEY, ConversationStore, KeyValueStore, StorageError,
)


BASE_TIME = datetime(2024, 5, 1, 12, 0, 0)


def make_conversation(index: int) -> ConversationData:
    timestamp = BASE_TIME + timedelta(minutes=index)
    return ConversationData(
        id=f"conv_{index}",
        timestamp=timestamp,
        messages=[
            Message(
                id="msg_0",
                sender="Amy",
                content=f"message number {index}",
                timestamp=timestamp,
                sentiment=Sentiment.NEUTRAL,
            )
        ],
        participants=["Amy"],
        conversation_tone=ToneAnalysis(overall_tone=OverallTone.NEUTRAL, emotional_intensity=5),
        extracted_text=f"Amy: message number {index}",
    )


class FakeClock:
    def __init__(self, now: datetime = BASE_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FailingKeyValueStore(KeyValueStore):
    """读正常、写失败的键值存储"""

    def set(self, key, value):
        raise OSError("disk full")

    def multi_remove(self, keys):
        raise OSError("disk full")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timed_store(tmp_path, clock) -> ConversationStore:
    config = StorageConfig(path=str(tmp_path / "store.json"))
    return ConversationStore(KeyValueStore(config.path), config, clock=clock)


class TestRetentionLimit:
    """保存的对话不超过上限，最新的在前"""

    @given(count=st.integers(min_value=1, max_value=20), limit=st.integers(min_value=1, max_value=8))
    @settings(max_examples=25, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_history_never_exceeds_limit(self, tmp_path, count: int, limit: int):
        path = tmp_path / f"store_{count}_{limit}.json"
        if path.exists():
            path.unlink()
        store = ConversationStore(
            KeyValueStore(str(path)),
            StorageConfig(path=str(path), max_conversations=limit),
        )

        for i in range(count):
            store.save_conversation(make_conversation(i))

        ids = [c.id for c in store.get_all_conversations()]
        expected = [f"conv_{i}" for i in reversed(range(count))][:limit]
        assert ids == expected

    def test_fifty_five_saves_keep_fifty(self, store):
        for i in range(55):
            store.save_conversation(make_conversation(i))

        conversations = store.get_all_conversations()
        assert len(conversations) == 50
        assert conversations[0].id == "conv_54"
        assert conversations[-1].id == "conv_5"

    def test_resaving_moves_conversation_to_front(self, store):
        for i in range(3):
            store.save_conversation(make_conversation(i))
        store.save_conversation(make_conversation(0))

        assert [c.id for c in store.get_all_conversations()] == ["conv_0", "conv_2", "conv_1"]

    def test_limit_follows_saved_settings(self, store):
        store.save_settings(AppSettings(max_stored_conversations=2))
        for i in range(4):
            store.save_conversation(make_conversation(i))

        assert [c.id for c in store.get_all_conversations()] == ["conv_3", "conv_2"]


class TestConversationHistory:

    def test_roundtrip_preserves_fields(self, store):
        original = make_conversation(7)
        store.save_conversation(original)

        loaded = store.get_conversation_by_id("conv_7")
        assert loaded is not None
        assert loaded.timestamp == original.timestamp
        assert loaded.messages[0].content == "message number 7"
        assert loaded.conversation_tone.overall_tone == OverallTone.NEUTRAL

    def test_json_roundtrip(self):
        original = make_conversation(3)
        assert ConversationData.from_json(original.to_json()) == original

    def test_missing_conversation(self, store):
        assert store.get_conversation_by_id("nope") is None

    def test_delete_and_clear(self, store):
        for i in range(3):
            store.save_conversation(make_conversation(i))

        store.delete_conversation("conv_1")
        assert [c.id for c in store.get_all_conversations()] == ["conv_2", "conv_0"]

        store.clear_all_conversations()
        assert store.get_all_conversations() == []

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        store = ConversationStore(KeyValueStore(str(path)), StorageConfig(path=str(path)))

        assert store.get_all_conversations() == []
        assert store.get_settings() == AppSettings()

    def test_corrupt_entry_reads_as_empty(self, store):
        store.kv.set(CONVERSATIONS_KEY, "[{\"id\": 1}]")
        assert store.get_all_conversations() == []

    def test_write_failure_raises(self, tmp_path):
        path = str(tmp_path / "store.json")
        store = ConversationStore(FailingKeyValueStore(path), StorageConfig(path=path))

        with pytest.raises(StorageError):
            store.save_conversation(make_conversation(0))
        with pytest.raises(StorageError):
            store.save_settings(AppSettings())
        with pytest.raises(StorageError):
            store.clear_all_conversations()

    def test_file_survives_new_store_instance(self, tmp_path):
        path = str(tmp_path / "store.json")
        ConversationStore(KeyValueStore(path), StorageConfig(path=path)).save_conversation(
            make_conversation(1)
        )

        reopened = ConversationStore(KeyValueStore(path), StorageConfig(path=path))
        assert [c.id for c in reopened.get_all_conversations()] == ["conv_1"]


class TestSettings:

    def test_defaults_when_missing(self, store):
        settings_ = store.get_settings()
        assert settings_.auto_save_conversations is True
        assert settings_.analysis_type == "full"
        assert settings_.max_stored_conversations == 50

    def test_partial_settings_merge_with_defaults(self, store):
        store.kv.set("@settings", json.dumps({"theme": "dark", "unknown_key": 1}))

        settings_ = store.get_settings()
        assert settings_.theme == "dark"
        assert settings_.auto_save_conversations is True
        assert settings_.notifications_enabled is True

    def test_save_and_load(self, store):
        store.save_settings(AppSettings(auto_save_conversations=False, analysis_type="quick"))

        settings_ = store.get_settings()
        assert settings_.auto_save_conversations is False
        assert settings_.analysis_type == "quick"


class TestAnalysisCache:
    """缓存一小时后过期"""

    def test_fresh_cache_hit(self, timed_store, clock):
        result = AnalysisResult(conversation_data=make_conversation(1), analysis="fine")
        timed_store.cache_analysis_result("conv_1", result)

        clock.advance(minutes=59)
        cached = timed_store.get_cached_analysis("conv_1")
        assert cached is not None
        assert cached.analysis == "fine"
        assert cached.conversation_data.id == "conv_1"

    def test_expired_cache_is_removed(self, timed_store, clock):
        timed_store.cache_analysis_result(
            "conv_1", AnalysisResult(conversation_data=make_conversation(1))
        )

        clock.advance(hours=1, seconds=1)
        assert timed_store.get_cached_analysis("conv_1") is None
        assert f"{CACHE_KEY}_conv_1" not in timed_store.kv.all_keys()

    def test_missing_cache(self, timed_store):
        assert timed_store.get_cached_analysis("conv_missing") is None

    def test_clear_expired_cache(self, timed_store, clock):
        timed_store.cache_analysis_result("old", AnalysisResult(conversation_data=make_conversation(1)))
        clock.advance(hours=2)
        timed_store.cache_analysis_result("new", AnalysisResult(conversation_data=make_conversation(2)))
        timed_store.kv.set(f"{CACHE_KEY}_broken", "not json")

        removed = timed_store.clear_expired_cache()

        assert removed == 2
        assert timed_store.get_cached_analysis("new") is not None
        assert f"{CACHE_KEY}_broken" not in timed_store.kv.all_keys()

    def test_cache_write_failure_is_not_raised(self, tmp_path):
        path = str(tmp_path / "store.json")
        store = ConversationStore(FailingKeyValueStore(path), StorageConfig(path=path))

        store.cache_analysis_result("conv_1", AnalysisResult(conversation_data=make_conversation(1)))
        assert store.get_cached_analysis("conv_1") is None

    def test_storage_stats(self, timed_store):
        for i in range(3):
            timed_store.save_conversation(make_conversation(i))
        timed_store.cache_analysis_result("conv_2", AnalysisResult(conversation_data=make_conversation(2)))

        stats = timed_store.get_storage_stats()
        assert stats.total_conversations == 3
        assert stats.total_cached_analyses == 1
        assert stats.newest_conversation == make_conversation(2).timestamp
        assert stats.oldest_conversation == make_conversation(0).timestamp


class TestUserProfile:

    def test_no_profile_initially(self, store):
        assert store.get_user_profile() is None
        assert store.is_onboarding_complete() is False

    def test_default_profile_is_persisted(self, timed_store):
        profile = timed_store.create_default_user_profile()

        loaded = timed_store.get_user_profile()
        assert loaded is not None
        assert loaded.id == profile.id
        assert loaded.preferred_mode == CommunicationMode.HEALTHY
        assert loaded.avatar.id == profile.avatar.id

    def test_save_updates_timestamp(self, timed_store, clock):
        profile = timed_store.create_default_user_profile()
        clock.advance(minutes=5)
        profile.name = "Sam"
        timed_store.save_user_profile(profile)

        loaded = timed_store.get_user_profile()
        assert loaded.name == "Sam"
        assert loaded.updated_at == BASE_TIME + timedelta(minutes=5)
        assert loaded.created_at == BASE_TIME

    def test_onboarding_flag(self, store):
        store.complete_onboarding()
        assert store.is_onboarding_complete() is True
