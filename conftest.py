# conftest.py
"""
테스트 공용 픽스처

외부 저장소(Firestore, Firebase Auth, Storage)는 메모리 대역으로 교체하고
나머지 서비스는 create_app이 실제로 조립하는 그대로 사용합니다.
"""
import copy
import itertools
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import pytest
from firebase_admin import auth as firebase_auth

from geofeed import create_app
from geofeed.core.errors import NotAuthenticatedError, NotFoundError
from geofeed.services.document_store import FIELD_ABSENT
from geofeed.services.identity_provider import IdentityProvider
from geofeed.services.kv_store import JsonFileKeyValueStore
from geofeed.services.storage_service import StorageService


class InMemoryDocumentStore:
    """FirestoreDocumentStore와 같은 인터페이스의 메모리 문서 저장소."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        # commit_batch 직전에 호출됩니다. 예외를 던지면 해당 배치는 커밋되지 않습니다.
        self.before_commit: Optional[Callable[[Mapping[str, Mapping[str, Any]]], None]] = None
        # 메서드 이름 -> 다음 호출에서 던질 예외
        self.failures: Dict[str, Exception] = {}
        self.committed_batches: List[List[str]] = []

    def fail_next(self, method: str, exc: Exception) -> None:
        self.failures[method] = exc

    def _maybe_fail(self, method: str) -> None:
        exc = self.failures.pop(method, None)
        if exc is not None:
            raise exc

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self.collections.setdefault(name, {})

    @staticmethod
    def _apply(doc: Dict[str, Any], partial: Mapping[str, Any]) -> None:
        for key, value in partial.items():
            if value is FIELD_ABSENT:
                doc.pop(key, None)
            else:
                doc[key] = copy.deepcopy(value)

    def seed(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._collection(collection)[doc_id] = copy.deepcopy(data)

    def get_document(self, collection, doc_id):
        self._maybe_fail('get_document')
        with self._lock:
            doc = self._collection(collection).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def set_document(self, collection, doc_id, data, merge=False):
        self._maybe_fail('set_document')
        with self._lock:
            docs = self._collection(collection)
            if merge and doc_id in docs:
                self._apply(docs[doc_id], data)
            else:
                docs[doc_id] = {k: copy.deepcopy(v) for k, v in data.items() if v is not FIELD_ABSENT}

    def add_document(self, collection, data):
        self._maybe_fail('add_document')
        doc_id = f"doc_{next(self._ids)}"
        self.set_document(collection, doc_id, data)
        return doc_id

    def delete_document(self, collection, doc_id):
        self._maybe_fail('delete_document')
        with self._lock:
            self._collection(collection).pop(doc_id, None)

    def update_fields(self, collection, doc_id, partial):
        self._maybe_fail('update_fields')
        with self._lock:
            doc = self._collection(collection).get(doc_id)
            if doc is None:
                raise NotFoundError(f"{collection}/{doc_id} 문서가 없습니다.")
            self._apply(doc, partial)

    def _sorted(self, items, order_by, descending):
        if order_by:
            items.sort(key=lambda item: item[1].get(order_by), reverse=descending)
        return items

    def query_by_field(self, collection, field, value, order_by=None, descending=True):
        self._maybe_fail('query_by_field')
        with self._lock:
            items = [(doc_id, copy.deepcopy(doc)) for doc_id, doc in self._collection(collection).items()
                     if doc.get(field) == value]
        return self._sorted(items, order_by, descending)

    def list_collection(self, collection, order_by=None, descending=True):
        self._maybe_fail('list_collection')
        with self._lock:
            items = [(doc_id, copy.deepcopy(doc)) for doc_id, doc in self._collection(collection).items()]
        return self._sorted(items, order_by, descending)

    def count_by_field(self, collection, field, value):
        self._maybe_fail('count_by_field')
        return len(self.query_by_field(collection, field, value))

    def commit_batch(self, collection, updates):
        if self.before_commit is not None:
            self.before_commit(updates)
        with self._lock:
            docs = self._collection(collection)
            missing = [doc_id for doc_id in updates if doc_id not in docs]
            if missing:
                raise NotFoundError(f"배치 대상 문서가 없습니다: {missing}")
            for doc_id, partial in updates.items():
                self._apply(docs[doc_id], partial)
            self.committed_batches.append(list(updates))

    def update_set_membership(self, collection, doc_id, set_field, counter_field, member, add):
        self._maybe_fail('update_set_membership')
        with self._lock:
            doc = self._collection(collection).get(doc_id)
            if doc is None:
                raise NotFoundError("게시글을 찾을 수 없습니다.")
            members = list(doc.get(set_field) or [])
            if (member in members) == add:
                return False
            if add:
                members.append(member)
            else:
                members.remove(member)
            doc[set_field] = members
            doc[counter_field] = (doc.get(counter_field) or 0) + (1 if add else -1)
            return True


class FakeIdentityProvider(IdentityProvider):
    """
    Firebase Auth 호출 부분만 메모리로 대체한 IdentityProvider.
    이벤트 스트림과 세션 상태 관리는 실제 구현을 그대로 사용합니다.

    sticky_photo_url을 지정하면 제공자가 돌려주는 모든 레코드가 그 사진을 보고합니다
    (서버에서는 지워졌지만 캐시가 오래된 상황).
    """

    def __init__(self):
        super().__init__(web_api_key=None)
        self.records: Dict[str, Dict[str, Any]] = {}
        self.sticky_photo_url: Optional[str] = None
        self.recent_login = True
        self.reload_calls = 0
        self.update_calls: List[Tuple[str, Dict[str, Any]]] = []

    def seed(self, uid: str, display_name: Optional[str] = None, photo_url: Optional[str] = None,
             email: Optional[str] = None, phone_number: Optional[str] = None) -> None:
        self.records[uid] = {
            'uid': uid,
            'email': email or f"{uid}@example.com",
            'display_name': display_name,
            'photo_url': photo_url,
            'phone_number': phone_number,
        }

    def _view(self, uid: str) -> Dict[str, Any]:
        record = dict(self.records[uid])
        if self.sticky_photo_url:
            record['photo_url'] = self.sticky_photo_url
        return record

    def reload_identity(self):
        self.reload_calls += 1
        return super().reload_identity()

    def _verify(self, id_token):
        if id_token not in self.records:
            raise NotAuthenticatedError("유효하지 않은 인증 토큰입니다.")
        auth_time = int(datetime.now(timezone.utc).timestamp())
        if not self.recent_login:
            auth_time -= int(timedelta(hours=1).total_seconds())
        return {'uid': id_token, 'auth_time': auth_time}

    def _fetch(self, uid):
        return self._view(uid)

    def _update_record(self, uid, **kwargs):
        self.update_calls.append((uid, dict(kwargs)))
        record = self.records[uid]
        for key, value in kwargs.items():
            record[key] = None if value is firebase_auth.DELETE_ATTRIBUTE else value
        return self._view(uid)

    def _reauthenticate(self, email, password):
        if password != 'correct-password':
            super()._reauthenticate(email, password)


class _FakeBlob:
    def __init__(self, bucket, path):
        self.bucket = bucket
        self.path = path

    def upload_from_string(self, data, content_type=None):
        self.bucket.objects[self.path] = (data, content_type)

    def make_public(self):
        pass

    @property
    def public_url(self):
        return f"https://storage.example.com/{self.bucket.name}/{self.path}"


class FakeBucket:
    def __init__(self, name='geofeed-test'):
        self.name = name
        self.objects: Dict[str, Tuple[bytes, str]] = {}

    def blob(self, path):
        return _FakeBlob(self, path)


class ManualSleeper:
    """지연 검증의 sleep을 대신합니다. 실제로 기다리지 않고 호출만 기록합니다."""

    def __init__(self):
        self.calls: List[float] = []
        self.on_sleep: Optional[Callable[[int], None]] = None

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep(len(self.calls))


@pytest.fixture
def documents():
    return InMemoryDocumentStore()


@pytest.fixture
def identity():
    return FakeIdentityProvider()


@pytest.fixture
def kv_store(tmp_path):
    return JsonFileKeyValueStore(str(tmp_path / 'kv_store.json'))


@pytest.fixture
def sleeper():
    return ManualSleeper()


@pytest.fixture
def bucket():
    return FakeBucket()


@pytest.fixture
def app(documents, identity, kv_store, sleeper, bucket, tmp_path):
    storage = StorageService(bucket=bucket)
    app = create_app('testing', adapters={
        'documents': documents,
        'identity': identity,
        'kv_store': kv_store,
        'storage': storage,
        'sleep': sleeper,
    })
    storage.image_cache = app.services['cache'].image_cache
    app.services['cache'].cache_dir = str(tmp_path / 'cache')
    yield app
    app.services['coordinator'].stop()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return app.services


def make_post_doc(author_id: str, username: str, created_at: datetime, photo_url: Optional[str] = None,
                  liked_by: Optional[List[str]] = None, description: str = "산책 기록") -> Dict[str, Any]:
    liked_by = liked_by or []
    data = {
        'userId': author_id,
        'username': username,
        'description': description,
        'imageUrl': None,
        'location': None,
        'createdAt': created_at,
        'likes': len(liked_by),
        'likedBy': list(liked_by),
    }
    if photo_url:
        data['userProfileImage'] = photo_url
    return data


@pytest.fixture
def seed_posts(documents):
    """author_id가 작성한 게시글 count개를 만들고 ID 목록을 반환합니다."""
    def _seed(author_id: str, count: int, username: str = "이전이름", photo_url: Optional[str] = None) -> List[str]:
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        post_ids = []
        for i in range(count):
            post_id = f"{author_id}_post_{i}"
            documents.seed('posts', post_id, make_post_doc(
                author_id, username, base + timedelta(minutes=i), photo_url=photo_url))
            post_ids.append(post_id)
        return post_ids
    return _seed


@pytest.fixture
def sign_in(identity, documents):
    """신원 레코드와 프로필 문서를 만들고 세션을 시작합니다."""
    def _sign_in(uid: str = 'alice', display_name: Optional[str] = '앨리스', photo_url: Optional[str] = None,
                 profile: Optional[Dict[str, Any]] = None, identity_photo_url: Optional[str] = None):
        identity.seed(uid, display_name=display_name, photo_url=identity_photo_url or photo_url)
        if profile is None:
            profile = {
                'email': f"{uid}@example.com",
                'displayName': display_name,
                'phoneNumber': None,
                'createdAt': datetime(2024, 1, 1, tzinfo=timezone.utc),
            }
            if photo_url:
                profile['photoURL'] = photo_url
        documents.seed('users', uid, profile)
        return identity.start_session(uid)
    return _sign_in
