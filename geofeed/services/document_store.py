# geofeed/services/document_store.py
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from firebase_admin import firestore

from geofeed.core.errors import NotFoundError, backend_call


class _FieldAbsent:
    """update_fields에서 '값을 null로 설정'이 아니라 '필드 삭제'를 뜻하는 표식."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return 'FIELD_ABSENT'

    def __bool__(self) -> bool:
        return False


FIELD_ABSENT = _FieldAbsent()


class FirestoreDocumentStore:
    """
    Firestore 문서 저장소 어댑터.
    엔진 계층은 컬렉션 이름과 문서 ID, 부분 필드 딕셔너리만 다루며
    Firestore 전용 표식(DELETE_FIELD, ArrayUnion, Increment)은 이 클래스 안에서만 사용합니다.
    """

    def __init__(self, db=None):
        self.db = db

    def init_app(self, app=None):
        """Firebase Admin 앱 초기화 이후 호출되어 Firestore 클라이언트를 설정합니다."""
        if self.db is None:
            self.db = firestore.client()
        logging.info("DocumentStore: Firestore 클라이언트가 성공적으로 초기화되었습니다.")

    @staticmethod
    def _to_firestore_fields(partial: Mapping[str, Any]) -> Dict[str, Any]:
        return {k: (firestore.DELETE_FIELD if v is FIELD_ABSENT else v) for k, v in partial.items()}

    def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with backend_call(f"{collection}/{doc_id} 조회"):
            doc = self.db.collection(collection).document(doc_id).get()
        return doc.to_dict() if doc.exists else None

    def set_document(self, collection: str, doc_id: str, data: Mapping[str, Any], merge: bool = False) -> None:
        with backend_call(f"{collection}/{doc_id} 저장"):
            self.db.collection(collection).document(doc_id).set(dict(data), merge=merge)

    def add_document(self, collection: str, data: Mapping[str, Any]) -> str:
        with backend_call(f"{collection} 문서 추가"):
            doc_ref = self.db.collection(collection).document()
            doc_ref.set(dict(data))
        return doc_ref.id

    def delete_document(self, collection: str, doc_id: str) -> None:
        with backend_call(f"{collection}/{doc_id} 삭제"):
            self.db.collection(collection).document(doc_id).delete()

    def update_fields(self, collection: str, doc_id: str, partial: Mapping[str, Any]) -> None:
        """부분 갱신. 값이 FIELD_ABSENT인 필드는 문서에서 삭제됩니다."""
        with backend_call(f"{collection}/{doc_id} 갱신"):
            self.db.collection(collection).document(doc_id).update(self._to_firestore_fields(partial))

    def query_by_field(self, collection: str, field: str, value: Any,
                       order_by: Optional[str] = None, descending: bool = True) -> List[Tuple[str, Dict[str, Any]]]:
        with backend_call(f"{collection} 조회 ({field} == {value})"):
            query = self.db.collection(collection).where(field, '==', value)
            if order_by:
                direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
                query = query.order_by(order_by, direction=direction)
            return [(doc.id, doc.to_dict()) for doc in query.stream()]

    def list_collection(self, collection: str, order_by: Optional[str] = None,
                        descending: bool = True) -> List[Tuple[str, Dict[str, Any]]]:
        with backend_call(f"{collection} 목록 조회"):
            query = self.db.collection(collection)
            if order_by:
                direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
                query = query.order_by(order_by, direction=direction)
            return [(doc.id, doc.to_dict()) for doc in query.stream()]

    def count_by_field(self, collection: str, field: str, value: Any) -> int:
        # count()는 문서를 모두 가져오지 않고 숫자만 집계합니다.
        with backend_call(f"{collection} 집계 ({field} == {value})"):
            count_result = self.db.collection(collection).where(field, '==', value).count().get()
        return count_result[0][0].value

    def commit_batch(self, collection: str, updates: Mapping[str, Mapping[str, Any]]) -> None:
        """여러 문서의 부분 갱신을 하나의 WriteBatch로 원자적으로 커밋합니다."""
        batch = self.db.batch()
        for doc_id, partial in updates.items():
            batch.update(self.db.collection(collection).document(doc_id), self._to_firestore_fields(partial))
        with backend_call(f"{collection} 배치 커밋 ({len(updates)}건)"):
            batch.commit()

    def update_set_membership(self, collection: str, doc_id: str, set_field: str, counter_field: str,
                              member: str, add: bool) -> bool:
        """
        집합 필드에 member를 추가/제거하고 카운터를 같은 트랜잭션에서 증감합니다.
        이미 원하는 상태라면 아무것도 쓰지 않으므로 같은 요청이 여러 번 도착해도 결과가 같습니다.

        :return: 실제로 상태가 바뀌었으면 True
        """
        doc_ref = self.db.collection(collection).document(doc_id)

        @firestore.transactional
        def _update_in_transaction(transaction):
            snapshot = doc_ref.get(transaction=transaction)
            if not snapshot.exists:
                raise NotFoundError("게시글을 찾을 수 없습니다.")
            members = snapshot.to_dict().get(set_field) or []
            if (member in members) == add:
                return False
            if add:
                transaction.update(doc_ref, {
                    set_field: firestore.ArrayUnion([member]),
                    counter_field: firestore.Increment(1),
                })
            else:
                transaction.update(doc_ref, {
                    set_field: firestore.ArrayRemove([member]),
                    counter_field: firestore.Increment(-1),
                })
            return True

        with backend_call(f"{collection}/{doc_id} {set_field} 갱신"):
            return _update_in_transaction(self.db.transaction())
