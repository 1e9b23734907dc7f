# geofeed/api/posts/services.py
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from geofeed.core.errors import FeedError, NotFoundError, PermissionDeniedError, ValidationError
from geofeed.core.session import SessionContext
from geofeed.models.post import Location, Post
from geofeed.services.document_store import FirestoreDocumentStore
from geofeed.services.storage_service import StorageService
from geofeed.utils.datetime_utils import DateTimeUtils

POSTS_COLLECTION = 'posts'
USERS_COLLECTION = 'users'

DEFAULT_DISPLAY_NAME = "사용자"

FEED_KEY = 'feed'


def author_feed_key(author_id: str) -> str:
    return f"author:{author_id}"


class PostService:
    """
    게시글 조회/작성 로직을 담당하는 서비스 클래스.
    목록 조회는 순수 읽기이며 플랫폼 데이터 계층이 제공하는 것 이상의 캐시를 두지 않습니다.
    """
    def __init__(self, document_store: FirestoreDocumentStore, session: SessionContext,
                 storage_service: Optional[StorageService] = None):
        self.store = document_store
        self.session = session
        self.storage_service = storage_service

    # --- 목록 조회 ---
    def list_feed(self, silent: bool = False) -> List[Post]:
        """전체 피드를 createdAt 내림차순으로 조회합니다."""
        return self._list(FEED_KEY, lambda: self.store.list_collection(POSTS_COLLECTION, order_by='createdAt'), silent)

    def list_by_author(self, author_id: str, silent: bool = False) -> List[Post]:
        """특정 사용자가 작성한 게시물 목록을 createdAt 내림차순으로 조회합니다."""
        return self._list(
            author_feed_key(author_id),
            lambda: self.store.query_by_field(POSTS_COLLECTION, 'userId', author_id, order_by='createdAt'),
            silent,
        )

    def _list(self, key: str, loader: Callable[[], List[Tuple[str, Dict[str, Any]]]], silent: bool) -> List[Post]:
        # silent 조회는 포커스 복귀 시 백그라운드 재검증용이므로 로딩/오류 상태를 건드리지 않습니다.
        if not silent:
            self.session.set_feed_loading(key)
        try:
            posts = [Post.from_firestore(doc_id, data) for doc_id, data in loader()]
        except FeedError as e:
            logging.error(f"게시글 목록 조회 실패 ({key}): {e}")
            if not silent:
                self.session.set_feed_error(key, "게시글을 불러올 수 없습니다.")
            raise
        if not silent:
            self.session.set_feed_loaded(key)
        return posts

    def get_post(self, post_id: str) -> Post:
        data = self.store.get_document(POSTS_COLLECTION, post_id)
        if data is None:
            raise NotFoundError("게시글을 찾을 수 없습니다.")
        return Post.from_firestore(post_id, data)

    def count_posts_by_author(self, author_id: str) -> int:
        """특정 사용자가 작성한 게시물의 총 개수를 반환합니다."""
        try:
            return self.store.count_by_field(POSTS_COLLECTION, 'userId', author_id)
        except FeedError as e:
            logging.error(f"사용자 게시물 수 집계 실패 (author_id: {author_id}): {e}", exc_info=True)
            return 0

    # --- 작성/수정/삭제 ---
    def create_post(self, user_id: str, description: str, image_url: Optional[str],
                    location: Optional[Dict[str, Any]]) -> Post:
        """새 게시글을 작성합니다. 작성자 이름/사진은 현재 프로필 문서에서 스냅샷으로 복사합니다."""
        if not (description or '').strip() and not image_url:
            raise ValidationError("게시글에는 설명 또는 이미지가 필요합니다.")

        profile = self.store.get_document(USERS_COLLECTION, user_id) or {}
        post = Post(
            post_id='',
            author_id=user_id,
            author_display_name=profile.get('displayName') or DEFAULT_DISPLAY_NAME,
            author_photo_url=profile.get('photoURL') or None,
            description=description or "",
            image_url=image_url or None,
            location=Location.from_dict(location),
            created_at=DateTimeUtils.now(),
        )
        post.post_id = self.store.add_document(POSTS_COLLECTION, post.to_firestore())
        logging.info(f"게시글 작성 완료 (post_id: {post.post_id}, user_id: {user_id})")
        return post

    def update_post(self, post_id: str, user_id: str, description: str, image_url: Optional[str],
                    location: Optional[Dict[str, Any]]) -> Post:
        """작성자 본인만 설명/이미지/위치를 수정할 수 있습니다."""
        post = self._get_owned_post(post_id, user_id, "수정")
        if not (description or '').strip() and not image_url:
            raise ValidationError("게시글에는 설명 또는 이미지가 필요합니다.")

        now = DateTimeUtils.now()
        self.store.update_fields(POSTS_COLLECTION, post_id, {
            'description': description or "",
            'imageUrl': image_url or None,
            'location': Location.from_dict(location).to_dict() if location else None,
            'updatedAt': now,
        })
        post.description = description or ""
        post.image_url = image_url or None
        post.location = Location.from_dict(location)
        post.updated_at = now
        return post

    def delete_post(self, post_id: str, user_id: str) -> None:
        self._get_owned_post(post_id, user_id, "삭제")
        self.store.delete_document(POSTS_COLLECTION, post_id)
        logging.info(f"게시글 삭제 완료 (post_id: {post_id})")

    def upload_post_image(self, data: bytes, content_type: str) -> str:
        if self.storage_service is None:
            raise RuntimeError("StorageService가 주입되지 않았습니다.")
        path = self.storage_service.build_path("post_image")
        return self.storage_service.upload(path, data, content_type)

    def _get_owned_post(self, post_id: str, user_id: str, action: str) -> Post:
        post = self.get_post(post_id)
        if post.author_id != user_id:
            raise PermissionDeniedError(f"게시글을 {action}할 권한이 없습니다.")
        return post
