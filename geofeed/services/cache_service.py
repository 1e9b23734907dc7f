# geofeed/services/cache_service.py
"""
캐시 무효화 계층

- decorate_for_freshness: 사진 URL을 쓸 때마다 캐시 무효화 쿼리 파라미터를 붙여
  URL을 키로 사용하는 이미지 캐시가 오래된 비트맵을 보여주지 못하게 합니다.
- purge_local_caches: 메모리 이미지 캐시, 피커/카메라 임시 파일, 이미지/프로필 관련
  영속 키를 최선 노력(best-effort)으로 정리합니다. 한 단계의 실패가 다른 단계를 막지 않습니다.
"""
import logging
import os
import random
import re
import shutil
import string
import threading
import time
from collections import OrderedDict
from typing import Callable, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from flask import Flask

from geofeed.services.kv_store import JsonFileKeyValueStore

logger = logging.getLogger(__name__)

CACHE_BUSTING_PARAMS = ('cache', 'nocache')
FRESHNESS_PARAM = 'nocache'

# 세션 사용자 정보를 담는 표준 키. 삭제하지 않고 photoURL만 비웁니다.
USER_DATA_KEY = 'userData'

PICKER_CACHE_DIRS = ['ImagePicker', 'ExponentImagePicker', 'ImageManipulator', 'Camera', 'Photos']
IMAGE_FILE_PATTERN = re.compile(r'\.(jpg|jpeg|png|gif|webp|bmp)$', re.IGNORECASE)

_BASE36 = string.digits + string.ascii_lowercase


class ImageCache:
    """URL을 키로 이미지 바이트를 보관하는 프로세스 메모리 LRU 캐시."""

    def __init__(self, max_entries: int = 200):
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, bytes]" = OrderedDict()
        self._lock = threading.Lock()

    def put(self, url: str, data: bytes) -> None:
        with self._lock:
            self._entries[url] = data
            self._entries.move_to_end(url)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def get(self, url: str) -> Optional[bytes]:
        with self._lock:
            data = self._entries.get(url)
            if data is not None:
                self._entries.move_to_end(url)
            return data

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class CacheService:
    def __init__(self, kv_store: JsonFileKeyValueStore, image_cache: Optional[ImageCache] = None,
                 cache_dir: Optional[str] = None, clock: Callable[[], float] = time.time):
        self.kv_store = kv_store
        self.image_cache = image_cache or ImageCache()
        self.cache_dir = cache_dir
        self.clock = clock

    def init_app(self, app: Flask):
        self.cache_dir = app.config.get('CACHE_DIR')
        self.image_cache.max_entries = app.config.get('IMAGE_CACHE_MAX_ENTRIES', self.image_cache.max_entries)

    # --- URL 캐시 무효화 ---
    def decorate_for_freshness(self, url: Optional[str]) -> Optional[str]:
        """
        기존 cache/nocache 파라미터를 제거한 뒤 'nocache=<epoch-ms>-<랜덤 5자>'를 붙입니다.
        두 번 적용해도 파라미터가 누적되지 않고 교체됩니다.
        """
        if not url:
            return None
        parts = urlsplit(url)
        query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
                 if k not in CACHE_BUSTING_PARAMS]
        token = ''.join(random.choice(_BASE36) for _ in range(5))
        query.append((FRESHNESS_PARAM, f"{int(self.clock() * 1000)}-{token}"))
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))

    @staticmethod
    def strip_freshness(url: Optional[str]) -> Optional[str]:
        """캐시 무효화 파라미터를 제거한 원본 URL. 같은 사진인지 비교할 때 사용합니다."""
        if not url:
            return None
        parts = urlsplit(url)
        query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
                 if k not in CACHE_BUSTING_PARAMS]
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))

    # --- 로컬 캐시 정리 ---
    def purge_local_caches(self) -> None:
        """각 단계는 독립적인 최선 노력 작업입니다. 실패는 로그만 남기고 삼킵니다."""
        self._purge_step("메모리 이미지 캐시", self.image_cache.clear)
        self._purge_step("피커/카메라 임시 파일", self._purge_picker_files)
        self._purge_step("세션 사용자 사진 필드", self._null_user_data_photo)
        self._purge_step("이미지/프로필 영속 키", self._purge_image_keys)

    def purge_all(self) -> None:
        """purge_local_caches에 더해 cache_/temp_ 접두사 키까지 정리합니다."""
        self.purge_local_caches()
        self._purge_step("일반 캐시 키", self._purge_generic_keys)

    def _purge_step(self, name: str, step: Callable[[], None]) -> bool:
        try:
            step()
            return True
        except Exception as e:
            logger.warning(f"캐시 정리 단계 실패 ({name}): {e}")
            return False

    def _purge_picker_files(self) -> None:
        if not self.cache_dir or not os.path.isdir(self.cache_dir):
            return
        for dir_name in PICKER_CACHE_DIRS:
            target = os.path.join(self.cache_dir, dir_name)
            try:
                if os.path.isdir(target):
                    shutil.rmtree(target)
            except OSError as e:
                logger.warning(f"임시 디렉터리 삭제 실패 ({target}): {e}")
        for filename in os.listdir(self.cache_dir):
            if not IMAGE_FILE_PATTERN.search(filename):
                continue
            try:
                os.remove(os.path.join(self.cache_dir, filename))
            except OSError as e:
                logger.warning(f"임시 이미지 파일 삭제 실패 ({filename}): {e}")

    def _null_user_data_photo(self) -> None:
        user_data = self.kv_store.get(USER_DATA_KEY)
        if isinstance(user_data, dict) and user_data.get('photoURL'):
            user_data['photoURL'] = None
            self.kv_store.set(USER_DATA_KEY, user_data)

    def _purge_image_keys(self) -> None:
        keys = self._matching_keys(lambda key: (
            key.startswith('imageCache_')
            or 'photo' in key
            or 'image' in key
            or 'profile' in key
            or USER_DATA_KEY in key
        ))
        if keys:
            self.kv_store.remove_many(keys)

    def _purge_generic_keys(self) -> None:
        keys = self._matching_keys(lambda key: (
            key.startswith('cache_') or key.startswith('temp_') or 'image' in key
        ))
        if keys:
            self.kv_store.remove_many(keys)

    def _matching_keys(self, predicate: Callable[[str], bool]) -> List[str]:
        return [key for key in self.kv_store.list_keys() if key != USER_DATA_KEY and predicate(key)]
