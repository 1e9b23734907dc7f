# geofeed/utils/datetime_utils.py
"""
Firestore 타임스탬프와 API 응답 사이의 시간 변환을 담당하는 유틸리티 모듈

- 모든 datetime은 UTC timezone-aware로 정규화합니다.
- Firestore에서 읽은 Timestamp/DatetimeWithNanoseconds를 datetime으로 변환합니다.
- 오버라이드 플래그처럼 밀리초 epoch로 저장하는 값을 변환합니다.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Union

logger = logging.getLogger(__name__)


class DateTimeUtils:
    """시간 처리를 위한 중앙화된 유틸리티 클래스"""

    @staticmethod
    def now() -> datetime:
        """현재 시간을 UTC timezone-aware datetime으로 반환"""
        return datetime.now(timezone.utc)

    @staticmethod
    def now_ms() -> int:
        """현재 시간을 Unix epoch 밀리초로 반환"""
        return DateTimeUtils.to_timestamp_ms(DateTimeUtils.now())

    @staticmethod
    def for_firestore(obj: Any) -> Any:
        """
        Firestore 저장을 위해 datetime을 UTC로 정규화합니다. dict/list는 재귀적으로 변환합니다.
        """
        if isinstance(obj, datetime):
            if obj.tzinfo is None:
                return obj.replace(tzinfo=timezone.utc)
            return obj.astimezone(timezone.utc)
        elif isinstance(obj, dict):
            return {k: DateTimeUtils.for_firestore(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [DateTimeUtils.for_firestore(item) for item in obj]
        return obj

    @staticmethod
    def from_firestore(obj: Any) -> Any:
        """
        Firestore에서 읽은 데이터의 시간 필드를 timezone-aware datetime(UTC)으로 변환합니다.

        변환 규칙:
        - Firestore Timestamp / DatetimeWithNanoseconds -> datetime (UTC)
        - ISO 문자열은 건드리지 않습니다 (description 등 일반 문자열과 구분할 수 없음)
        - dict/list 내부 재귀적 변환
        """
        try:
            if isinstance(obj, datetime):
                if obj.tzinfo is None:
                    return obj.replace(tzinfo=timezone.utc)
                return obj.astimezone(timezone.utc)
            elif hasattr(obj, 'timestamp') and callable(obj.timestamp):
                return datetime.fromtimestamp(obj.timestamp(), tz=timezone.utc)
            elif isinstance(obj, dict):
                return {k: DateTimeUtils.from_firestore(v) for k, v in obj.items()}
            elif isinstance(obj, list):
                return [DateTimeUtils.from_firestore(item) for item in obj]
            return obj
        except Exception as e:
            logger.error(f"Firestore 읽기 변환 실패: {obj} ({type(obj)}) - {e}")
            # 변환 실패 시 원본 객체 반환 (로그만 남김)
            return obj

    @staticmethod
    def from_timestamp_ms(timestamp_ms: Union[int, float]) -> datetime:
        """Unix timestamp(밀리초)를 UTC datetime으로 변환"""
        if not isinstance(timestamp_ms, (int, float)):
            raise ValueError(f"잘못된 timestamp 형식입니다: {timestamp_ms}")
        return datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)

    @staticmethod
    def to_timestamp_ms(dt: Any) -> int:
        """datetime 또는 Firestore timestamp를 Unix timestamp(밀리초)로 변환"""
        if isinstance(dt, datetime):
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return int(dt.timestamp() * 1000)
        if hasattr(dt, 'timestamp') and callable(dt.timestamp):
            return int(dt.timestamp() * 1000)
        raise ValueError(f"timestamp로 변환할 수 없습니다: {dt}")
