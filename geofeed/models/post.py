# geofeed/models/post.py
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Set, Dict, Any

from geofeed.utils.datetime_utils import DateTimeUtils

@dataclass
class Location:
    """게시글에 첨부되는 위치 정보. 역지오코딩 실패 시 address는 없을 수 있습니다."""
    latitude: float
    longitude: float
    address: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Location"]:
        if not data:
            return None
        return cls(latitude=data['latitude'], longitude=data['longitude'], address=data.get('address'))

    def to_dict(self) -> Dict[str, Any]:
        data = {'latitude': self.latitude, 'longitude': self.longitude}
        if self.address:
            data['address'] = self.address
        return data

@dataclass
class Post:
    """
    Firestore 'posts' 컬렉션의 문서 구조를 정의하는 데이터클래스.
    author_display_name / author_photo_url은 작성자 프로필의 비정규화 사본입니다.
    """
    post_id: str
    author_id: str
    author_display_name: str
    description: str = ""
    author_photo_url: Optional[str] = None
    image_url: Optional[str] = None
    location: Optional[Location] = None
    created_at: datetime = field(default_factory=DateTimeUtils.now)
    updated_at: Optional[datetime] = None
    like_count: int = 0
    liked_by: Set[str] = field(default_factory=set)

    @classmethod
    def from_firestore(cls, post_id: str, data: Dict[str, Any]) -> "Post":
        """Firestore 문서를 Post로 변환합니다. 선택 필드는 기본값으로 채웁니다."""
        data = DateTimeUtils.from_firestore(data)
        return cls(
            post_id=post_id,
            author_id=data.get('userId'),
            author_display_name=data.get('username'),
            description=data.get('description') or "",
            author_photo_url=data.get('userProfileImage') or None,
            image_url=data.get('imageUrl') or None,
            location=Location.from_dict(data.get('location')),
            created_at=data.get('createdAt'),
            updated_at=data.get('updatedAt'),
            like_count=data.get('likes') or 0,
            liked_by=set(data.get('likedBy') or []),
        )

    def to_firestore(self) -> Dict[str, Any]:
        data = {
            'userId': self.author_id,
            'username': self.author_display_name,
            'description': self.description,
            'imageUrl': self.image_url,
            'location': self.location.to_dict() if self.location else None,
            'createdAt': self.created_at,
            'likes': self.like_count,
            'likedBy': sorted(self.liked_by),
        }
        # 사진이 없는 작성자는 키 자체가 없어야 키 존재 여부로 판단하는 독자가 올바르게 동작합니다.
        if self.author_photo_url:
            data['userProfileImage'] = self.author_photo_url
        if self.updated_at:
            data['updatedAt'] = self.updated_at
        return DateTimeUtils.for_firestore(data)
