# geofeed/models/user.py
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any

from geofeed.utils.datetime_utils import DateTimeUtils

@dataclass
class User:
    """
    Firestore 'users' 컬렉션의 프로필 문서 구조를 정의하는 데이터클래스.
    신원 제공자(Firebase Auth)의 레코드와 함께 두 개의 사본이 존재하며, 프로필 문서가 기준입니다.
    """
    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None # 사진이 없으면 문서에서 필드 자체가 삭제됩니다.
    phone_number: Optional[str] = None
    created_at: datetime = field(default_factory=DateTimeUtils.now)

    @classmethod
    def from_firestore(cls, user_id: str, data: Dict[str, Any]) -> "User":
        data = DateTimeUtils.from_firestore(data or {})
        return cls(
            user_id=user_id,
            email=data.get('email'),
            display_name=data.get('displayName'),
            photo_url=data.get('photoURL') or None,
            phone_number=data.get('phoneNumber'),
            created_at=data.get('createdAt') or DateTimeUtils.now(),
        )

    def to_firestore(self) -> Dict[str, Any]:
        data = {
            'email': self.email,
            'displayName': self.display_name,
            'phoneNumber': self.phone_number,
            'createdAt': self.created_at,
        }
        if self.photo_url:
            data['photoURL'] = self.photo_url
        return DateTimeUtils.for_firestore(data)
