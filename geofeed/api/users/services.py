# geofeed/api/users/services.py
import logging
import re
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlsplit

from geofeed.core.errors import FeedError, NotAuthenticatedError, NotFoundError, ValidationError
from geofeed.core.session import SessionContext
from geofeed.models.user import User
from geofeed.services.cache_service import CacheService
from geofeed.services.document_store import FIELD_ABSENT, FirestoreDocumentStore
from geofeed.services.identity_provider import IdentityProvider
from geofeed.services.override_store import OverrideStore
from geofeed.services.storage_service import StorageService
from geofeed.api.posts.services import PostService
from geofeed.api.users.propagation import PostFields, PostPropagator, PropagationResult
from geofeed.utils.datetime_utils import DateTimeUtils

USERS_COLLECTION = 'users'

DEFAULT_DISPLAY_NAME = "사용자"

# 프로필 문서 필드 -> 게시글 비정규화 사본 필드
POST_FIELD_BY_PROFILE_FIELD = {
    'displayName': 'username',
    'photoURL': 'userProfileImage',
}
MAX_DISPLAY_NAME_LENGTH = 50

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_display_name(name: Optional[str]) -> str:
    name = (name or '').strip()
    if not name:
        raise ValidationError("이름은 비워둘 수 없습니다.")
    if len(name) > MAX_DISPLAY_NAME_LENGTH:
        raise ValidationError(f"이름은 {MAX_DISPLAY_NAME_LENGTH}자 이하여야 합니다.")
    return name


def validate_photo_url(url: Optional[str]) -> Optional[str]:
    """None은 '사진 제거'를 뜻합니다. 그 외에는 http(s) 절대 URL이어야 합니다."""
    if url is None:
        return None
    parts = urlsplit(url.strip())
    if parts.scheme not in ('http', 'https') or not parts.netloc:
        raise ValidationError("올바른 이미지 URL이 아닙니다.")
    return url.strip()


class IdentitySyncService:
    """
    신원 동기화 엔진.

    표시 이름(displayName)과 프로필 사진(photoURL)을 세 곳에서 일치시킵니다.
    - 신원 레코드 (Firebase Auth, 로컬 캐시가 오래될 수 있음)
    - 프로필 문서 (Firestore 'users', 기준 데이터)
    - 사용자가 작성한 게시글의 비정규화 사본 (Firestore 'posts')

    이미 커밋된 단계는 되돌리지 않습니다. 전파가 일부 실패해도 프로필 문서는 올바르며
    게시글 사본만 뒤처진 상태이므로 retry_propagation으로 복구할 수 있습니다.
    """
    def __init__(self, identity_provider: IdentityProvider, document_store: FirestoreDocumentStore,
                 override_store: OverrideStore, cache_service: CacheService, propagator: PostPropagator,
                 session: SessionContext, post_service: Optional[PostService] = None,
                 storage_service: Optional[StorageService] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 verify_delay_seconds: float = 1.0, verify_max_attempts: int = 2):
        self.provider = identity_provider
        self.store = document_store
        self.overrides = override_store
        self.cache = cache_service
        self.propagator = propagator
        self.session = session
        self.post_service = post_service
        self.storage_service = storage_service
        self.sleep = sleep
        self.verify_delay_seconds = verify_delay_seconds
        self.verify_max_attempts = verify_max_attempts
        self._inflight: Dict[str, Future] = {}
        self._inflight_guard = threading.Lock()

    # =====================================================================================
    # 세션 시작 / 토큰 갱신
    # =====================================================================================
    def reconcile_on_auth_change(self, identity: Optional[Dict[str, Any]]) -> Optional[User]:
        """
        신원 세션이 시작되거나 토큰이 갱신될 때마다 호출됩니다.
        - 신원 레코드에 이름이 없고 프로필 문서에 있으면 신원 레코드로 밀어 넣습니다.
        - 신원 레코드의 이름을 프로필 문서가 모르면 프로필 문서를 맞춥니다.
        - 신원 레코드에만 사진이 있으면 오래된 캐시로 보고 오버라이드 플래그를 설정합니다.
        """
        if identity is None:
            return None
        uid = identity['uid']
        profile = self._ensure_profile(identity)

        profile_name = profile.get('displayName')
        identity_name = identity.get('display_name')
        if not identity_name and profile_name:
            identity = self.provider.set_identity_fields(display_name=profile_name)
            logging.info(f"신원 레코드에 프로필 이름 반영 (uid: {uid})")
        elif identity_name and profile_name != identity_name:
            self.store.update_fields(USERS_COLLECTION, uid, {'displayName': identity_name})
            profile['displayName'] = identity_name
            logging.info(f"프로필 문서에 신원 레코드 이름 반영 (uid: {uid})")
            self._propagate_quietly(uid, self._profile_post_fields(uid, 'displayName'))

        if identity.get('photo_url') and not profile.get('photoURL'):
            logging.warning(f"신원 레코드에만 사진이 존재합니다. 오래된 캐시로 간주합니다 (uid: {uid})")
            self.overrides.force_photo_absent()

        user = self._merge(uid, profile, identity)
        self.session.publish_user(user)
        return user

    def _ensure_profile(self, identity: Dict[str, Any]) -> Dict[str, Any]:
        """프로필 문서가 없으면 신원 레코드로부터 생성합니다."""
        uid = identity['uid']
        profile = self.store.get_document(USERS_COLLECTION, uid)
        if profile is not None:
            return profile
        user = User(
            user_id=uid,
            email=identity.get('email'),
            display_name=identity.get('display_name'),
            phone_number=identity.get('phone_number'),
            created_at=DateTimeUtils.now(),
        )
        data = user.to_firestore()
        self.store.set_document(USERS_COLLECTION, uid, data)
        logging.info(f"프로필 문서 생성 (uid: {uid})")
        return data

    # =====================================================================================
    # 전체 재조정 (프로필 화면 진입 시)
    # =====================================================================================
    def refresh_identity(self) -> User:
        """
        같은 사용자에 대해 동시에 두 번 실행되지 않습니다.
        진행 중인 재조정이 있으면 새로 시작하지 않고 그 결과를 함께 기다립니다.
        """
        uid = self._current_uid()
        with self._inflight_guard:
            inflight = self._inflight.get(uid)
            is_owner = inflight is None
            if is_owner:
                inflight = Future()
                self._inflight[uid] = inflight
        if not is_owner:
            logging.info(f"진행 중인 신원 재조정에 합류합니다 (uid: {uid})")
            return inflight.result()

        try:
            user = self._refresh_identity(uid)
            inflight.set_result(user)
            return user
        except BaseException as e:
            inflight.set_exception(e)
            raise
        finally:
            with self._inflight_guard:
                self._inflight.pop(uid, None)

    def _refresh_identity(self, uid: str) -> User:
        # 1. 로컬 캐시 정리
        self.cache.purge_local_caches()

        # 2. 프로필 문서 다시 읽기
        profile = self.store.get_document(USERS_COLLECTION, uid) or {}
        profile_photo = profile.get('photoURL') or None

        # 3. 캐시를 우회해 신원 레코드 다시 읽기
        identity = self.provider.reload_identity()

        # 4. 사진이 어긋나면 신원 레코드를 프로필 문서에 맞춤 (nocache 파라미터 차이는 같은 사진)
        identity_photo = identity.get('photo_url') or None
        if bool(profile_photo) != bool(identity_photo):
            if profile_photo:
                logging.info(f"신원 레코드에 프로필 사진 복원 (uid: {uid})")
                self.provider.set_identity_fields(photo_url=self.cache.decorate_for_freshness(profile_photo))
            else:
                logging.warning(f"신원 레코드의 오래된 사진을 제거합니다 (uid: {uid})")
                self.overrides.force_photo_absent()
                self.provider.set_identity_fields(photo_url=None)
        elif profile_photo and self.cache.strip_freshness(profile_photo) != self.cache.strip_freshness(identity_photo):
            logging.info(f"신원 레코드의 다른 사진을 프로필 사진으로 교체 (uid: {uid})")
            self.provider.set_identity_fields(photo_url=self.cache.decorate_for_freshness(profile_photo))

        # 5. 교정된 신원 레코드를 다시 읽고, 오버라이드를 재검증/적용한 뒤 게시
        identity = self.provider.reload_identity()
        self._reverify_override(uid, profile_photo, identity.get('photo_url'))
        user = self._merge(uid, profile, identity)
        self.session.publish_user(user)

        # 6. 지연 검증: 4단계와 경쟁한 쓰기가 남긴 사진을 정리
        if not profile_photo:
            self._verify_photo_cleared(uid)
            user = self._merge(uid, profile, self.provider.get_current_identity() or identity)
            self.session.publish_user(user)
        return user

    def _reverify_override(self, uid: str, profile_photo: Optional[str], identity_photo: Optional[str]) -> None:
        """
        활성화된 사진 제거 오버라이드를 매 재조정마다 다시 확인합니다.
        - 프로필 문서와 신원 레코드 모두 사진이 없음: 정리 완료, 플래그 해제
        - 프로필 문서에 새 사진이 확정됨: 제거 요청 이후 새 사진이 설정된 것, 플래그 해제
        """
        if not self.overrides.should_force_photo_absent():
            return
        if not profile_photo and not identity_photo:
            self.overrides.clear()
            logging.info(f"사진 제거가 확인되어 오버라이드를 해제합니다 (uid: {uid})")
        elif profile_photo:
            self.overrides.clear()
            logging.info(f"새 프로필 사진이 확인되어 오버라이드를 해제합니다 (uid: {uid})")

    def _verify_photo_cleared(self, uid: str) -> bool:
        """
        신원 레코드가 여전히 프로필 문서에 없는 사진을 보고하면 양쪽을 다시 정리합니다.
        첫 검사는 바로 수행하고, 사진이 남아 있었을 때만 지연 후 다시 검사합니다.
        최대 verify_max_attempts 회 검사하며 실패는 로그만 남깁니다.

        :return: 두 저장소 모두 사진이 없음이 확인되면 True
        """
        for attempt in range(1, self.verify_max_attempts + 1):
            if attempt > 1:
                self.sleep(self.verify_delay_seconds)
            try:
                profile = self.store.get_document(USERS_COLLECTION, uid) or {}
                identity = self.provider.reload_identity()
                if profile.get('photoURL'):
                    # 그 사이 새 사진이 설정됨. 정리할 대상이 아닙니다.
                    return False
                if not identity.get('photo_url'):
                    self._reverify_override(uid, None, None)
                    return True
                logging.warning(f"지연 검증: 신원 레코드에 사진이 남아 있습니다 (uid: {uid}, 시도: {attempt})")
                self.store.update_fields(USERS_COLLECTION, uid, {'photoURL': FIELD_ABSENT})
                self.provider.set_identity_fields(photo_url=None)
            except FeedError as e:
                logging.warning(f"지연 검증 실패 (uid: {uid}, 시도: {attempt}): {e}")
        return False

    # =====================================================================================
    # 신원 변경 진입점
    # =====================================================================================
    def set_display_name(self, name: str) -> User:
        name = validate_display_name(name)
        uid = self._current_uid()

        self.provider.set_identity_fields(display_name=name)
        self.store.update_fields(USERS_COLLECTION, uid, {'displayName': name})
        user = self._publish_current(uid)
        logging.info(f"표시 이름 변경 완료 (uid: {uid})")

        self.propagator.propagate(uid, self._profile_post_fields(uid, 'displayName'))
        return user

    def set_photo_url(self, url: Optional[str]) -> User:
        url = validate_photo_url(url)
        uid = self._current_uid()
        self.cache.purge_all()

        if url is None:
            # 쓰기 전에 플래그를 설정해, 쓰기 도중 reload가 캐시된 사진을 되살리지 못하게 합니다.
            self.overrides.force_photo_absent()
            self.provider.set_identity_fields(photo_url=None)
            self.store.update_fields(USERS_COLLECTION, uid, {'photoURL': FIELD_ABSENT})

            profile = self.store.get_document(USERS_COLLECTION, uid) or {}
            identity = self.provider.reload_identity()
            if not profile.get('photoURL') and not identity.get('photo_url'):
                self.overrides.clear()
            else:
                logging.warning(f"사진 제거가 아직 확인되지 않아 오버라이드를 유지합니다 (uid: {uid})")
        else:
            decorated = self.cache.decorate_for_freshness(url)
            self.provider.set_identity_fields(photo_url=decorated)
            self.store.update_fields(USERS_COLLECTION, uid, {'photoURL': decorated})

            profile = self.store.get_document(USERS_COLLECTION, uid) or {}
            if profile.get('photoURL') == decorated and self.overrides.should_force_photo_absent():
                self.overrides.clear()

        user = self._publish_current(uid)
        logging.info(f"프로필 사진 {'제거' if url is None else '변경'} 완료 (uid: {uid})")

        self.propagator.propagate(uid, self._profile_post_fields(uid, 'photoURL'))
        return user

    def update_profile(self, display_name: Optional[str] = None, email: Optional[str] = None,
                       phone_number: Optional[str] = None, current_password: Optional[str] = None) -> User:
        """
        프로필 편집. 이메일 변경에는 재인증이 필요할 수 있으며, 이름 변경은 게시글까지 전파됩니다.
        """
        uid = self._current_uid()
        if display_name is not None:
            display_name = validate_display_name(display_name)
        current = self.provider.get_current_identity() or {}

        profile_updates: Dict[str, Any] = {}
        if email and email != current.get('email'):
            if not EMAIL_PATTERN.match(email):
                raise ValidationError("올바른 이메일 주소를 입력해주세요.")
            self.provider.update_email(email, current_password)
            profile_updates['email'] = email
        if phone_number is not None:
            profile_updates['phoneNumber'] = phone_number.strip()

        if profile_updates:
            self.store.update_fields(USERS_COLLECTION, uid, profile_updates)

        if display_name is not None:
            return self.set_display_name(display_name)
        return self._publish_current(uid)

    def register_profile(self, phone_number: Optional[str] = None) -> User:
        """회원가입 직후 호출되어 프로필 문서를 만들고 전화번호를 기록합니다."""
        identity = self.provider.get_current_identity()
        if identity is None:
            raise NotAuthenticatedError()
        self._ensure_profile(identity)
        if phone_number is not None:
            self.store.update_fields(USERS_COLLECTION, identity['uid'], {'phoneNumber': phone_number.strip() or None})
        return self._publish_current(identity['uid'])

    def upload_profile_photo(self, data: bytes, content_type: str) -> User:
        if self.storage_service is None:
            raise RuntimeError("StorageService가 주입되지 않았습니다.")
        path = self.storage_service.build_path("profile_photo")
        url = self.storage_service.upload(path, data, content_type)
        return self.set_photo_url(url)

    def retry_propagation(self) -> PropagationResult:
        """프로필 문서의 현재 값으로 작성한 모든 게시글 사본을 다시 맞춥니다 (부분 실패 복구용)."""
        uid = self._current_uid()
        if self.store.get_document(USERS_COLLECTION, uid) is None:
            raise NotFoundError("사용자를 찾을 수 없습니다.")
        return self.propagator.propagate(uid, self._profile_post_fields(uid, *POST_FIELD_BY_PROFILE_FIELD))

    # =====================================================================================
    # 조회
    # =====================================================================================
    def get_profile(self, user_id: str) -> Dict[str, Any]:
        """공개 프로필 정보와 게시물 수를 조회합니다. 본인 프로필에는 오버라이드가 적용됩니다."""
        profile = self.store.get_document(USERS_COLLECTION, user_id)
        if profile is None:
            raise NotFoundError("사용자를 찾을 수 없습니다.")
        photo_url = profile.get('photoURL') or None
        if user_id == self.session.uid and self.overrides.should_force_photo_absent():
            photo_url = None
        return {
            'user_id': user_id,
            'display_name': profile.get('displayName') or DEFAULT_DISPLAY_NAME,
            'photo_url': photo_url,
            'post_count': self.post_service.count_posts_by_author(user_id) if self.post_service else 0,
        }

    # --- 내부 헬퍼 ---
    def _current_uid(self) -> str:
        identity = self.provider.get_current_identity()
        if identity is None:
            raise NotAuthenticatedError()
        return identity['uid']

    def _merge(self, uid: str, profile: Dict[str, Any], identity: Dict[str, Any]) -> User:
        identity = self.overrides.apply(identity)
        return User(
            user_id=uid,
            email=identity.get('email') or profile.get('email'),
            display_name=profile.get('displayName') or identity.get('display_name') or DEFAULT_DISPLAY_NAME,
            photo_url=identity.get('photo_url'),
            phone_number=profile.get('phoneNumber'),
            created_at=DateTimeUtils.from_firestore(profile.get('createdAt')) or DateTimeUtils.now(),
        )

    def _publish_current(self, uid: str) -> User:
        profile = self.store.get_document(USERS_COLLECTION, uid) or {}
        user = self._merge(uid, profile, self.provider.get_current_identity() or {'uid': uid})
        self.session.publish_user(user)
        return user

    def _profile_post_fields(self, uid: str, *profile_fields: str) -> Callable[[], Dict[str, Any]]:
        """
        게시글 사본에 쓸 값을 프로필 문서에서 읽어 오는 함수를 만듭니다.
        전파기가 사용자별 잠금을 얻은 뒤 호출하므로, 동시에 들어온 변경 중 마지막 프로필 값이 반영됩니다.
        """
        def resolve() -> Dict[str, Any]:
            profile = self.store.get_document(USERS_COLLECTION, uid) or {}
            values = {
                'displayName': profile.get('displayName') or DEFAULT_DISPLAY_NAME,
                'photoURL': profile.get('photoURL') or FIELD_ABSENT,
            }
            return {POST_FIELD_BY_PROFILE_FIELD[name]: values[name] for name in profile_fields}
        return resolve

    def _propagate_quietly(self, uid: str, fields: PostFields) -> None:
        try:
            self.propagator.propagate(uid, fields)
        except FeedError as e:
            logging.error(f"게시글 전파 실패 (uid: {uid}): {e}")
