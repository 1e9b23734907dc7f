# geofeed/api/users/propagation.py
"""
게시글 비정규화 필드 전파

프로필 문서에 표시 이름/사진 변경이 확정된 뒤, 해당 사용자가 작성한 모든 게시글의
username / userProfileImage 사본을 갱신합니다.

- 게시글을 최대 batch_size 개씩 청크로 나누고 청크마다 WriteBatch로 원자적으로 커밋합니다.
- 청크는 서로 겹치지 않으므로 동시에 실행할 수 있습니다.
- 청크 실패는 서로 독립적입니다. 앞선 청크를 되돌리지 않고 PartialPropagationError로 보고합니다.
- 같은 사용자에 대한 전파는 한 번에 하나만 실행됩니다. 반영할 값을 잠금 안에서 계산하도록
  fields에 함수를 넘기면, 잠금을 기다리는 동안 프로필이 바뀌어도 마지막 전파가 최신 값을 씁니다.
"""
import logging
import threading
import weakref
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Union

from geofeed.core.errors import PartialPropagationError
from geofeed.services.document_store import FirestoreDocumentStore

POSTS_COLLECTION = 'posts'

PostFields = Union[Mapping[str, Any], Callable[[], Mapping[str, Any]]]

# Firestore WriteBatch 한 번의 최대 쓰기 수
MAX_BATCH_SIZE = 500


@dataclass
class PropagationResult:
    total_posts: int = 0
    committed_chunks: int = 0
    failed_chunks: int = 0
    failed_post_ids: List[str] = field(default_factory=list)


class PostPropagator:
    def __init__(self, document_store: FirestoreDocumentStore, batch_size: int = MAX_BATCH_SIZE,
                 max_workers: int = 4):
        if not 0 < batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size는 1 이상 {MAX_BATCH_SIZE} 이하여야 합니다: {batch_size}")
        self.store = document_store
        self.batch_size = batch_size
        self.max_workers = max_workers
        # 사용 중인 잠금만 유지됩니다. 전파가 끝나면 사용자별 잠금은 사라집니다.
        self._user_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self._user_locks[user_id] = lock
            return lock

    def propagate(self, user_id: str, fields: PostFields) -> PropagationResult:
        """
        user_id가 작성한 모든 게시글에 fields를 반영합니다.
        값이 FIELD_ABSENT인 필드는 게시글에서 삭제됩니다.
        fields가 함수이면 사용자별 잠금을 얻은 뒤 호출해 반영할 값을 얻습니다.

        :raises PartialPropagationError: 일부 청크만 커밋된 경우
        :raises FeedError: 모든 청크가 실패한 경우 첫 번째 청크의 오류
        """
        lock = self._lock_for(user_id)
        with lock:
            updates = dict(fields() if callable(fields) else fields)
            post_ids = [doc_id for doc_id, _ in self.store.query_by_field(POSTS_COLLECTION, 'userId', user_id)]
            chunks = [post_ids[i:i + self.batch_size] for i in range(0, len(post_ids), self.batch_size)]
            result = PropagationResult(total_posts=len(post_ids))
            if not chunks:
                return result

            errors: List[Exception] = []
            workers = max(1, min(self.max_workers, len(chunks)))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='propagation') as executor:
                futures = [
                    (chunk, executor.submit(self.store.commit_batch, POSTS_COLLECTION,
                                            {post_id: updates for post_id in chunk}))
                    for chunk in chunks
                ]
                for chunk, future in futures:
                    try:
                        future.result()
                        result.committed_chunks += 1
                    except Exception as e:
                        logging.error(f"게시글 전파 청크 실패 (user_id: {user_id}, 게시글 {len(chunk)}건): {e}")
                        result.failed_chunks += 1
                        result.failed_post_ids.extend(chunk)
                        errors.append(e)

            logging.info(
                f"게시글 전파 완료 (user_id: {user_id}, 게시글: {result.total_posts}, "
                f"성공 청크: {result.committed_chunks}, 실패 청크: {result.failed_chunks})"
            )
            if errors and result.committed_chunks == 0:
                raise errors[0]
            if errors:
                raise PartialPropagationError(result.committed_chunks, result.failed_chunks, result.failed_post_ids)
            return result
