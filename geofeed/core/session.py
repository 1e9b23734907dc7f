# geofeed/core/session.py
"""
프로세스 단위 세션 컨텍스트

현재 사용자(병합된 User 뷰), 세션 동안의 좋아요 오버라이드, 피드 로딩/오류 상태를 보관합니다.
create_app에서 한 번 생성되어 필요한 엔진에 참조로 전달되며, 전역 변수로 접근하지 않습니다.
수명주기: 프로세스 시작 시 생성 -> 신원 변경 콜백에서 채워짐 -> 로그아웃 시 정리
"""
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional

from geofeed.models.user import User
from geofeed.utils.datetime_utils import DateTimeUtils

UserListener = Callable[[Optional[User]], None]


@dataclass
class FeedState:
    """목록 화면의 로딩/오류 상태. silent 조회는 이 상태를 바꾸지 않습니다."""
    loading: bool = False
    error: Optional[str] = None
    last_loaded_at: Optional[datetime] = None


class SessionContext:
    def __init__(self):
        self._lock = threading.RLock()
        self._uid: Optional[str] = None
        self._user: Optional[User] = None
        self._liked_posts: Dict[str, bool] = {}
        self._feed_states: Dict[str, FeedState] = {}
        self._listeners: List[UserListener] = []

    # --- 사용자 ---
    @property
    def uid(self) -> Optional[str]:
        with self._lock:
            return self._uid

    @property
    def current_user(self) -> Optional[User]:
        with self._lock:
            return replace(self._user) if self._user else None

    @property
    def is_authenticated(self) -> bool:
        return self.uid is not None

    def begin(self, uid: str) -> None:
        """신원 세션 시작 이벤트에서 호출됩니다. 다른 사용자로 바뀌면 이전 상태를 버립니다."""
        with self._lock:
            if self._uid != uid:
                self._reset()
            self._uid = uid

    def publish_user(self, user: Optional[User]) -> None:
        """병합된 사용자 뷰를 게시하고 구독자에게 알립니다."""
        with self._lock:
            self._user = user
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(replace(user) if user else None)
            except Exception as e:
                logging.error(f"사용자 구독자 알림 실패: {e}", exc_info=True)

    def subscribe(self, listener: UserListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return unsubscribe

    def teardown(self) -> None:
        """로그아웃 시 호출됩니다."""
        with self._lock:
            uid = self._uid
            self._reset()
        logging.info(f"세션 컨텍스트 정리 완료 (uid: {uid})")
        self.publish_user(None)

    def _reset(self) -> None:
        self._uid = None
        self._user = None
        self._liked_posts.clear()
        self._feed_states.clear()

    # --- 좋아요 오버라이드 ---
    def track_liked_post(self, post_id: str, liked: bool) -> None:
        with self._lock:
            self._liked_posts[post_id] = liked

    def liked_override(self, post_id: str) -> Optional[bool]:
        """세션 중 기록된 좋아요 상태. 기록이 없으면 None."""
        with self._lock:
            return self._liked_posts.get(post_id)

    def restore_liked_post(self, post_id: str, expected: bool, previous: Optional[bool]) -> bool:
        """
        현재 값이 expected일 때만 previous로 되돌립니다. 그 사이 새 토글이 있었다면 그대로 둡니다.

        :return: 되돌렸으면 True
        """
        with self._lock:
            if self._liked_posts.get(post_id) != expected:
                return False
            if previous is None:
                self._liked_posts.pop(post_id, None)
            else:
                self._liked_posts[post_id] = previous
            return True

    # --- 피드 상태 ---
    def feed_state(self, key: str) -> FeedState:
        with self._lock:
            return replace(self._feed_states.setdefault(key, FeedState()))

    def set_feed_loading(self, key: str) -> None:
        with self._lock:
            state = self._feed_states.setdefault(key, FeedState())
            state.loading = True
            state.error = None

    def set_feed_loaded(self, key: str) -> None:
        with self._lock:
            state = self._feed_states.setdefault(key, FeedState())
            state.loading = False
            state.last_loaded_at = DateTimeUtils.now()

    def set_feed_error(self, key: str, message: str) -> None:
        with self._lock:
            state = self._feed_states.setdefault(key, FeedState())
            state.loading = False
            state.error = message
