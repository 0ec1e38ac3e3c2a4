"""
本地存储 - 基于JSON文件的键值存储与对话历史管理
读操作失败时记录日志并返回默认值，写操作失败时记录日志并抛出
"""
import json
import logging
import os
import tempfile
import threading
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from .models import (
    AnalysisResult, AppSettings, CommunicationMode, ConversationData,
    DEFAULT_AVATARS, StorageConfig, StorageStats, UserProfile,
)

logger = logging.getLogger(__name__)


CONVERSATIONS_KEY = "@conversations"
SETTINGS_KEY = "@settings"
CACHE_KEY = "@cache"
USER_PROFILE_KEY = "user_profile"
ONBOARDING_STATUS_KEY = "onboarding_status"


class StorageError(Exception):
    """存储错误"""
    pass


class KeyValueStore:
    """
    字符串键值存储，所有值保存在同一个JSON文件中
    写入时先写临时文件再替换，避免半写状态
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, 'r', encoding='utf-8') as f:
            content = f.read()
        return json.loads(content) if content.strip() else {}

    def _dump(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._dump(data)

    def remove(self, key: str) -> None:
        self.multi_remove([key])

    def multi_remove(self, keys: Sequence[str]) -> None:
        with self._lock:
            data = self._load()
            removed = [key for key in keys if data.pop(key, None) is not None]
            if removed:
                self._dump(data)

    def all_keys(self) -> List[str]:
        with self._lock:
            return list(self._load().keys())


class ConversationStore:
    """对话历史、设置、分析缓存和用户资料"""

    def __init__(
        self,
        kv: Optional[KeyValueStore] = None,
        config: Optional[StorageConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or StorageConfig()
        self.kv = kv or KeyValueStore(self.config.path)
        self._clock = clock

    @property
    def cache_expiry(self) -> timedelta:
        return timedelta(hours=self.config.cache_expiry_hours)

    def _write(self, key: str, value: Any) -> None:
        self.kv.set(key, json.dumps(value, ensure_ascii=False))

    # ---------- 对话历史 ----------

    def save_conversation(self, conversation: ConversationData) -> None:
        """保存对话，只保留最近的N条"""
        try:
            limit = self.get_settings().max_stored_conversations
            existing = [c for c in self.get_all_conversations() if c.id != conversation.id]
            recent = [conversation] + existing
            self._write(CONVERSATIONS_KEY, [c.to_dict() for c in recent[:limit]])
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save conversation: {e}")
            raise StorageError("Failed to save conversation data") from e

    def get_all_conversations(self) -> List[ConversationData]:
        """按时间倒序返回所有对话"""
        try:
            raw = self.kv.get(CONVERSATIONS_KEY)
            if not raw:
                return []
            return [ConversationData.from_dict(item) for item in json.loads(raw)]
        except (OSError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to load conversations: {e}")
            return []

    def get_conversation_by_id(self, conversation_id: str) -> Optional[ConversationData]:
        for conversation in self.get_all_conversations():
            if conversation.id == conversation_id:
                return conversation
        return None

    def delete_conversation(self, conversation_id: str) -> None:
        try:
            remaining = [
                c.to_dict() for c in self.get_all_conversations() if c.id != conversation_id
            ]
            self._write(CONVERSATIONS_KEY, remaining)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to delete conversation: {e}")
            raise StorageError("Failed to delete conversation") from e

    def clear_all_conversations(self) -> None:
        try:
            self.kv.remove(CONVERSATIONS_KEY)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to clear conversations: {e}")
            raise StorageError("Failed to clear conversation data") from e

    # ---------- 设置 ----------

    def default_settings(self) -> AppSettings:
        return AppSettings(max_stored_conversations=self.config.max_conversations)

    def save_settings(self, settings: AppSettings) -> None:
        try:
            self._write(SETTINGS_KEY, settings.to_dict())
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save settings: {e}")
            raise StorageError("Failed to save settings") from e

    def get_settings(self) -> AppSettings:
        """读取设置，缺失的字段使用默认值"""
        defaults = self.default_settings()
        try:
            raw = self.kv.get(SETTINGS_KEY)
            if not raw:
                return defaults
            merged = defaults.to_dict()
            merged.update(json.loads(raw))
            return AppSettings.from_dict(merged)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to load settings: {e}")
            return defaults

    # ---------- 分析缓存 ----------

    def _cache_key(self, conversation_id: str) -> str:
        return f"{CACHE_KEY}_{conversation_id}"

    def _is_expired(self, cached_at: str) -> bool:
        return self._clock() - datetime.fromisoformat(cached_at) > self.cache_expiry

    def cache_analysis_result(self, conversation_id: str, result: AnalysisResult) -> None:
        """缓存分析结果，失败只记录日志"""
        try:
            payload = result.to_dict()
            payload["cached_at"] = self._clock().isoformat()
            self._write(self._cache_key(conversation_id), payload)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to cache analysis result: {e}")

    def get_cached_analysis(self, conversation_id: str) -> Optional[AnalysisResult]:
        """读取缓存，过期的缓存会被删除"""
        key = self._cache_key(conversation_id)
        try:
            raw = self.kv.get(key)
            if not raw:
                return None

            payload = json.loads(raw)
            if self._is_expired(payload.pop("cached_at")):
                self.kv.remove(key)
                return None
            return AnalysisResult.from_dict(payload)
        except (OSError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to get cached analysis result: {e}")
            return None

    def clear_expired_cache(self) -> int:
        """删除过期或无法解析的缓存，返回删除数量"""
        try:
            expired = []
            for key in self.kv.all_keys():
                if not key.startswith(CACHE_KEY):
                    continue
                try:
                    payload = json.loads(self.kv.get(key) or "")
                    if self._is_expired(payload["cached_at"]):
                        expired.append(key)
                except (KeyError, TypeError, ValueError):
                    # 无法解析的缓存视为过期
                    expired.append(key)

            if expired:
                self.kv.multi_remove(expired)
            return len(expired)
        except OSError as e:
            logger.error(f"Failed to clear expired cache: {e}")
            return 0

    def get_storage_stats(self) -> StorageStats:
        try:
            conversations = self.get_all_conversations()
            cache_keys = [k for k in self.kv.all_keys() if k.startswith(CACHE_KEY)]
            return StorageStats(
                total_conversations=len(conversations),
                total_cached_analyses=len(cache_keys),
                oldest_conversation=conversations[-1].timestamp if conversations else None,
                newest_conversation=conversations[0].timestamp if conversations else None,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to get storage stats: {e}")
            return StorageStats(total_conversations=0, total_cached_analyses=0)

    # ---------- 用户资料 ----------

    def get_user_profile(self) -> Optional[UserProfile]:
        try:
            raw = self.kv.get(USER_PROFILE_KEY)
            return UserProfile.from_dict(json.loads(raw)) if raw else None
        except (OSError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to load user profile: {e}")
            return None

    def save_user_profile(self, profile: UserProfile) -> None:
        try:
            profile.updated_at = self._clock()
            self._write(USER_PROFILE_KEY, profile.to_dict())
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save user profile: {e}")
            raise StorageError("Failed to save user profile") from e

    def create_default_user_profile(self) -> UserProfile:
        now = self._clock()
        profile = UserProfile(
            id=f"user_{uuid.uuid4().hex[:12]}",
            avatar=DEFAULT_AVATARS[0],
            preferred_mode=CommunicationMode.HEALTHY,
            created_at=now,
            updated_at=now,
        )
        self.save_user_profile(profile)
        return profile

    def complete_onboarding(self) -> None:
        try:
            self._write(ONBOARDING_STATUS_KEY, True)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to save onboarding status: {e}")
            raise StorageError("Failed to save onboarding status") from e

    def is_onboarding_complete(self) -> bool:
        try:
            raw = self.kv.get(ONBOARDING_STATUS_KEY)
            return bool(json.loads(raw)) if raw else False
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load onboarding status: {e}")
            return False
