# geofeed/services/identity_provider.py
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import requests
from firebase_admin import auth as firebase_auth
from flask import Flask

from geofeed.core.errors import NotAuthenticatedError, PermissionDeniedError, NetworkError, backend_call
from geofeed.services.document_store import FIELD_ABSENT
from geofeed.utils.datetime_utils import DateTimeUtils

IdentityCallback = Callable[[Optional[Dict[str, Any]]], None]

_UNSET = object()

# 이메일 변경처럼 민감한 작업은 최근 로그인(초 단위) 이후에만 허용합니다.
RECENT_LOGIN_SECONDS = 5 * 60

_SIGN_IN_URL = "https://identitytoolkit.googleapis.com/v1/accounts:signInWithPassword"


def identity_from_record(record) -> Dict[str, Any]:
    """firebase_admin UserRecord를 엔진이 다루는 딕셔너리 형태로 변환합니다."""
    return {
        'uid': record.uid,
        'email': record.email,
        'display_name': record.display_name or None,
        'photo_url': record.photo_url or None,
        'phone_number': record.phone_number,
    }


class IdentityProvider:
    """
    Firebase Authentication 위의 신원 세션.

    - 마지막으로 본 신원 레코드를 로컬에 캐시합니다. get_current_identity()는 이 캐시를 돌려주므로
      오래된 값일 수 있고, reload_identity()만이 캐시를 우회해 제공자에서 다시 읽습니다.
    - 세션 시작/토큰 갱신/로그아웃은 하나의 순서 있는 이벤트 스트림으로 구독자에게 전달됩니다.
      이벤트는 한 번에 하나씩, 발생한 순서대로 전달됩니다.
    """

    def __init__(self, web_api_key: Optional[str] = None):
        self.web_api_key = web_api_key
        self._identity: Optional[Dict[str, Any]] = None
        self._auth_time: Optional[int] = None
        self._subscribers: List[IdentityCallback] = []
        self._state_lock = threading.Lock()
        self._dispatch_lock = threading.Lock()

    def init_app(self, app: Flask):
        self.web_api_key = app.config.get('FIREBASE_WEB_API_KEY')

    # --- 이벤트 스트림 ---
    def on_identity_change(self, callback: IdentityCallback) -> Callable[[], None]:
        """신원 변경 콜백을 등록하고, 등록 해제 함수를 반환합니다."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return unsubscribe

    def _emit(self, identity: Optional[Dict[str, Any]]) -> None:
        with self._dispatch_lock:
            for callback in list(self._subscribers):
                callback(dict(identity) if identity else None)

    # --- 세션 수명주기 ---
    def start_session(self, id_token: str) -> Dict[str, Any]:
        """클라이언트가 로그인 후 받은 Firebase ID 토큰으로 세션을 시작합니다."""
        decoded = self._verify(id_token)
        identity = self._fetch(decoded['uid'])
        with self._state_lock:
            self._identity = identity
            self._auth_time = decoded.get('auth_time')
        logging.info(f"신원 세션 시작 (uid: {identity['uid']})")
        self._emit(identity)
        return identity

    def refresh_session(self, id_token: str) -> Dict[str, Any]:
        """토큰 갱신. 같은 사용자의 토큰이어야 합니다."""
        decoded = self._verify(id_token)
        current = self.get_current_identity()
        if current is None or current['uid'] != decoded['uid']:
            raise NotAuthenticatedError("현재 세션과 다른 사용자의 토큰입니다.")
        with self._state_lock:
            self._auth_time = decoded.get('auth_time', self._auth_time)
        logging.info(f"신원 토큰 갱신 (uid: {decoded['uid']})")
        self._emit(current)
        return current

    def end_session(self) -> None:
        with self._state_lock:
            uid = self._identity['uid'] if self._identity else None
            self._identity = None
            self._auth_time = None
        logging.info(f"신원 세션 종료 (uid: {uid})")
        self._emit(None)

    # --- 신원 레코드 접근 ---
    def get_current_identity(self) -> Optional[Dict[str, Any]]:
        """로컬 캐시의 신원 레코드. 제공자의 최신 값과 다를 수 있습니다."""
        with self._state_lock:
            return dict(self._identity) if self._identity else None

    def reload_identity(self) -> Dict[str, Any]:
        """캐시를 우회해 제공자에서 신원 레코드를 다시 읽고 캐시를 갱신합니다."""
        uid = self._require_uid()
        identity = self._fetch(uid)
        with self._state_lock:
            self._identity = identity
        return dict(identity)

    def set_identity_fields(self, display_name: Any = _UNSET, photo_url: Any = _UNSET) -> Dict[str, Any]:
        """
        신원 레코드의 표시 이름/사진 URL을 갱신합니다.
        photo_url에 None 또는 FIELD_ABSENT를 넘기면 사진 속성이 삭제됩니다.
        """
        uid = self._require_uid()
        kwargs = {}
        if display_name is not _UNSET:
            kwargs['display_name'] = display_name
        if photo_url is not _UNSET:
            kwargs['photo_url'] = firebase_auth.DELETE_ATTRIBUTE if photo_url in (None, FIELD_ABSENT, '') else photo_url
        if not kwargs:
            return self.get_current_identity()
        identity = self._update_record(uid, **kwargs)
        with self._state_lock:
            self._identity = identity
        return dict(identity)

    def update_email(self, email: str, current_password: Optional[str]) -> Dict[str, Any]:
        """
        이메일 변경. 최근 로그인이 아니면 현재 비밀번호로 재인증해야 합니다.
        재인증이 불가능하면 requires_reauth가 설정된 PermissionDeniedError를 발생시킵니다.
        """
        uid = self._require_uid()
        current = self.get_current_identity()
        if current_password:
            self._reauthenticate(current.get('email') or '', current_password)
        elif not self._is_recent_login():
            raise PermissionDeniedError("이메일을 변경하려면 다시 로그인해야 합니다.", requires_reauth=True)
        identity = self._update_record(uid, email=email)
        with self._state_lock:
            self._identity = identity
        return dict(identity)

    # --- 내부 헬퍼 ---
    def _require_uid(self) -> str:
        with self._state_lock:
            if not self._identity:
                raise NotAuthenticatedError()
            return self._identity['uid']

    def _verify(self, id_token: str) -> Dict[str, Any]:
        try:
            return firebase_auth.verify_id_token(id_token, check_revoked=True)
        except (ValueError, firebase_auth.InvalidIdTokenError, firebase_auth.ExpiredIdTokenError,
                firebase_auth.RevokedIdTokenError) as e:
            logging.warning(f"ID 토큰 검증 실패: {e}")
            raise NotAuthenticatedError("유효하지 않은 인증 토큰입니다.")

    def _fetch(self, uid: str) -> Dict[str, Any]:
        with backend_call(f"신원 레코드 조회 (uid: {uid})"):
            record = firebase_auth.get_user(uid)
        return identity_from_record(record)

    def _update_record(self, uid: str, **kwargs) -> Dict[str, Any]:
        with backend_call(f"신원 레코드 갱신 (uid: {uid})"):
            record = firebase_auth.update_user(uid, **kwargs)
        return identity_from_record(record)

    def _is_recent_login(self) -> bool:
        with self._state_lock:
            auth_time = self._auth_time
        if not auth_time:
            return False
        return DateTimeUtils.now_ms() / 1000 - auth_time <= RECENT_LOGIN_SECONDS

    def _reauthenticate(self, email: str, password: str) -> None:
        if not self.web_api_key:
            raise PermissionDeniedError("재인증을 수행할 수 없습니다. 다시 로그인해주세요.", requires_reauth=True)
        try:
            response = requests.post(
                f"{_SIGN_IN_URL}?key={self.web_api_key}",
                json={"email": email, "password": password, "returnSecureToken": True},
                timeout=10,
            )
        except requests.RequestException as e:
            logging.warning(f"재인증 요청 실패: {e}")
            raise NetworkError()
        if response.status_code != 200:
            logging.warning(f"재인증 거부: {response.status_code} {response.text}")
            raise PermissionDeniedError("현재 비밀번호가 올바르지 않습니다.", requires_reauth=True)
        with self._state_lock:
            self._auth_time = DateTimeUtils.now_ms() // 1000
