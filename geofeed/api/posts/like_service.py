# geofeed/api/posts/like_service.py
import logging
from typing import Tuple

from geofeed.core.session import SessionContext
from geofeed.models.post import Post
from geofeed.services.document_store import FirestoreDocumentStore

POSTS_COLLECTION = 'posts'


class LikeService:
    """
    좋아요 토글 엔진.

    (사용자, 게시글) 쌍마다 '좋아요 안 함 <-> 좋아요' 두 상태만 존재합니다.
    로컬 상태를 먼저 바꿔 화면이 즉시 반영되게 하고, 서버에는 멱등한 집합 갱신을 보냅니다.
    """
    def __init__(self, document_store: FirestoreDocumentStore, session: SessionContext):
        self.store = document_store
        self.session = session

    def is_liked(self, post: Post, user_id: str) -> bool:
        """세션 오버라이드가 있으면 그 값이, 없으면 서버가 보고한 likedBy 포함 여부가 현재 상태입니다."""
        override = self.session.liked_override(post.post_id)
        if override is not None:
            return override
        return user_id in post.liked_by

    def toggle_like(self, post: Post, user_id: str) -> Tuple[bool, Post]:
        """
        좋아요 상태를 뒤집습니다.

        :param post: 호출자가 들고 있는 게시글 사본. like_count/liked_by가 즉시 갱신됩니다.
        :return: (토글 후 좋아요 여부, 갱신된 사본)
        """
        previous_override = self.session.liked_override(post.post_id)
        current = self.is_liked(post, user_id)
        liked = not current

        # 1. 낙관적 갱신: 오버라이드 맵과 로컬 사본을 먼저 바꿉니다.
        self.session.track_liked_post(post.post_id, liked)
        if liked:
            if user_id not in post.liked_by:
                post.liked_by.add(user_id)
                post.like_count += 1
        elif user_id in post.liked_by:
            post.liked_by.discard(user_id)
            post.like_count = max(0, post.like_count - 1)

        # 2. 서버 갱신: likedBy 집합 추가/제거와 카운터 증감을 하나의 원자적 갱신으로 보냅니다.
        try:
            self.store.update_set_membership(POSTS_COLLECTION, post.post_id, 'likedBy', 'likes', user_id, add=liked)
        except Exception as e:
            # 오버라이드만 되돌립니다. 로컬 사본은 다음 조회 때 서버 값으로 교체됩니다.
            rolled_back = self.session.restore_liked_post(post.post_id, expected=liked, previous=previous_override)
            logging.error(
                f"게시글 좋아요 토글 실패 (user_id: {user_id}, post_id: {post.post_id}, rolled_back: {rolled_back}): {e}",
                exc_info=True,
            )
            raise

        logging.info(f"게시글 좋아요 토글 (user_id: {user_id}, post_id: {post.post_id}, liked: {liked})")
        return liked, post
