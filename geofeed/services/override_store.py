# geofeed/services/override_store.py
import logging
from typing import Any, Dict, Optional

from geofeed.services.kv_store import JsonFileKeyValueStore
from geofeed.utils.datetime_utils import DateTimeUtils

AUTH_OVERRIDE_KEY = 'auth_overrides'


class OverrideStore:
    """
    신원 제공자가 보고하는 값보다 우선하는 클라이언트 측 '진실 오버라이드'를 영속화합니다.

    현재는 forcePhotoAbsent 하나만 존재합니다: 신원 제공자가 여전히 사진 URL을 돌려주더라도
    플래그가 지워질 때까지 사용자에게는 사진이 없는 것으로 보여야 합니다.
    """

    def __init__(self, kv_store: JsonFileKeyValueStore):
        self.kv_store = kv_store

    def _load(self) -> Dict[str, Any]:
        try:
            overrides = self.kv_store.get(AUTH_OVERRIDE_KEY)
        except Exception as e:
            logging.error(f"오버라이드 플래그 읽기 실패: {e}", exc_info=True)
            return {}
        return overrides if isinstance(overrides, dict) else {}

    def force_photo_absent(self) -> None:
        """사진 제거 요청 시 호출됩니다. 쓰기 실패는 호출자에게 전파합니다."""
        overrides = self._load()
        overrides['forcePhotoAbsent'] = True
        overrides['lastUpdated'] = DateTimeUtils.now_ms()
        self.kv_store.set(AUTH_OVERRIDE_KEY, overrides)
        logging.info("오버라이드 플래그 설정: forcePhotoAbsent")

    def should_force_photo_absent(self) -> bool:
        return bool(self._load().get('forcePhotoAbsent'))

    def status(self) -> Optional[Dict[str, Any]]:
        """활성 플래그와 설정 시각을 반환합니다. 플래그가 없으면 None."""
        overrides = self._load()
        if not overrides.get('forcePhotoAbsent'):
            return None
        last_updated = overrides.get('lastUpdated')
        return {
            'force_photo_absent': True,
            'last_updated': DateTimeUtils.from_timestamp_ms(last_updated) if isinstance(last_updated, (int, float)) else None,
        }

    def clear(self) -> None:
        self.kv_store.remove(AUTH_OVERRIDE_KEY)
        logging.info("오버라이드 플래그 해제")

    def apply(self, identity: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """신원 레코드 사본에 오버라이드를 적용해 반환합니다. 원본은 변경하지 않습니다."""
        if identity is None:
            return None
        overridden = dict(identity)
        if self.should_force_photo_absent():
            overridden['photo_url'] = None
        return overridden
