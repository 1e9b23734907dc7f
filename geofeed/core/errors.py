# geofeed/core/errors.py
"""
클라이언트 코어 전체에서 사용하는 예외 계층.

- ValidationError: 잘못된 입력. 네트워크에 도달하기 전에 발생합니다.
- PermissionDeniedError: 백엔드가 쓰기를 거부함 (이메일 변경 등은 재인증이 필요할 수 있음)
- NetworkError: 일시적인 오류. 작업 전체를 다시 시도해도 안전합니다.
- PartialPropagationError: 게시글 전파 청크 중 일부만 커밋된 상태
"""
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from firebase_admin import exceptions as firebase_exceptions
from google.api_core import exceptions as google_exceptions


class FeedError(Exception):
    """모든 도메인 예외의 기반 클래스. 라우트에서 그대로 JSON 응답으로 변환됩니다."""
    error_code = "FEED_ERROR"
    status_code = 500
    message = "요청을 처리하는 중 오류가 발생했습니다."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_dict(self) -> dict:
        return {"error_code": self.error_code, "message": self.message}


class ValidationError(FeedError, ValueError):
    error_code = "VALIDATION_ERROR"
    status_code = 400
    message = "입력값이 올바르지 않습니다."


class NotAuthenticatedError(FeedError):
    error_code = "NOT_AUTHENTICATED"
    status_code = 401
    message = "로그인이 필요합니다."


class PermissionDeniedError(FeedError, PermissionError):
    error_code = "PERMISSION_DENIED"
    status_code = 403
    message = "이 작업을 수행할 권한이 없습니다."

    def __init__(self, message: Optional[str] = None, requires_reauth: bool = False):
        super().__init__(message)
        self.requires_reauth = requires_reauth

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["requires_reauth"] = self.requires_reauth
        return data


class NotFoundError(FeedError, LookupError):
    error_code = "RESOURCE_NOT_FOUND"
    status_code = 404
    message = "요청한 리소스를 찾을 수 없습니다."


class NetworkError(FeedError, ConnectionError):
    error_code = "NETWORK_ERROR"
    status_code = 503
    message = "네트워크 오류가 발생했습니다. 잠시 후 다시 시도해주세요."


class PartialPropagationError(FeedError):
    """
    프로필 문서 쓰기는 성공했지만 게시글 비정규화 사본 일부가 갱신되지 않은 상태.
    호출자는 신원 변경 전체가 아니라 전파 단계만 다시 시도할 수 있습니다.
    """
    error_code = "PARTIAL_PROPAGATION"
    status_code = 500
    message = "프로필은 저장되었지만 일부 게시글에 반영되지 않았습니다. 다시 시도해주세요."

    def __init__(self, committed_chunks: int, failed_chunks: int, failed_post_ids: List[str],
                 message: Optional[str] = None):
        super().__init__(message)
        self.committed_chunks = committed_chunks
        self.failed_chunks = failed_chunks
        self.failed_post_ids = failed_post_ids

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["details"] = {
            "committed_chunks": self.committed_chunks,
            "failed_chunks": self.failed_chunks,
            "failed_post_ids": self.failed_post_ids,
        }
        return data


_PERMISSION_ERRORS = (
    google_exceptions.PermissionDenied,
    google_exceptions.Unauthenticated,
    firebase_exceptions.PermissionDeniedError,
    firebase_exceptions.UnauthenticatedError,
)
_NETWORK_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.RetryError,
    firebase_exceptions.UnavailableError,
    firebase_exceptions.DeadlineExceededError,
    ConnectionError,
    TimeoutError,
)
_NOT_FOUND_ERRORS = (
    google_exceptions.NotFound,
    firebase_exceptions.NotFoundError,
)


def translate_backend_error(exc: Exception) -> Exception:
    """Firebase/Google 클라이언트 예외를 도메인 예외로 변환합니다. 해당하지 않으면 원본을 반환합니다."""
    if isinstance(exc, FeedError):
        return exc
    if isinstance(exc, _PERMISSION_ERRORS):
        return PermissionDeniedError(f"백엔드가 요청을 거부했습니다: {exc}")
    if isinstance(exc, _NOT_FOUND_ERRORS):
        return NotFoundError(str(exc))
    if isinstance(exc, _NETWORK_ERRORS):
        return NetworkError()
    return exc


@contextmanager
def backend_call(action: str) -> Iterator[None]:
    """
    외부 저장소 호출 구간을 감싸 예외를 도메인 예외로 변환합니다.

    :param action: 로그에 남길 작업 설명 (예: "posts/abc 문서 갱신")
    """
    try:
        yield
    except Exception as e:
        translated = translate_backend_error(e)
        if translated is e:
            raise
        logging.warning(f"백엔드 호출 실패 ({action}): {e}")
        raise translated from e
