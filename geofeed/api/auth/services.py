# geofeed/api/auth/services.py
import logging
from typing import Any, Callable, Dict, List, Optional

from geofeed.core.session import SessionContext
from geofeed.models.user import User
from geofeed.services.cache_service import USER_DATA_KEY
from geofeed.services.identity_provider import IdentityProvider
from geofeed.services.kv_store import JsonFileKeyValueStore
from geofeed.api.users.services import IdentitySyncService


def user_data_snapshot(user: User) -> Dict[str, Any]:
    """앱 재시작 시 바로 보여줄 세션 사용자 캐시(userData 키)의 형태."""
    return {
        'uid': user.user_id,
        'email': user.email,
        'displayName': user.display_name,
        'photoURL': user.photo_url,
        'phoneNumber': user.phone_number,
    }


class IdentityCoordinator:
    """
    신원 변경 이벤트 스트림의 유일한 소비자.

    세션 시작/토큰 갱신 이벤트마다 세션 컨텍스트를 열고 프로필 문서와 신원 레코드를 재조정합니다.
    로그아웃(None) 이벤트에서는 세션 컨텍스트를 정리합니다.
    세션에 게시되는 사용자 정보는 userData 키에 그대로 기록됩니다.
    """
    def __init__(self, identity_provider: IdentityProvider, session: SessionContext,
                 identity_sync: IdentitySyncService, kv_store: JsonFileKeyValueStore):
        self.provider = identity_provider
        self.session = session
        self.identity_sync = identity_sync
        self.kv_store = kv_store
        self._unsubscribers: List[Callable[[], None]] = []

    def start(self) -> None:
        if self._unsubscribers:
            return
        self._unsubscribers.append(self.provider.on_identity_change(self.handle_identity_change))
        self._unsubscribers.append(self.session.subscribe(self._persist_user))

    def stop(self) -> None:
        while self._unsubscribers:
            self._unsubscribers.pop()()

    def handle_identity_change(self, identity: Optional[Dict[str, Any]]) -> None:
        if identity is None:
            self.session.teardown()
            return

        uid = identity['uid']
        self.session.begin(uid)
        try:
            self.identity_sync.reconcile_on_auth_change(identity)
        except Exception as e:
            # 재조정 실패로 로그인 자체를 막지는 않습니다. 다음 refresh_identity에서 다시 맞춰집니다.
            logging.error(f"신원 재조정 실패 (uid: {uid}): {e}", exc_info=True)

    def _persist_user(self, user: Optional[User]) -> None:
        try:
            if user is None:
                self.kv_store.remove(USER_DATA_KEY)
            else:
                self.kv_store.set(USER_DATA_KEY, user_data_snapshot(user))
        except OSError as e:
            logging.warning(f"세션 사용자 캐시 갱신 실패: {e}")
