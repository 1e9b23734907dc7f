# geofeed/services/storage_service.py
import logging
import random
import string
from typing import Optional

from flask import Flask
from firebase_admin import storage

from geofeed.core.errors import ValidationError, backend_call
from geofeed.services.cache_service import ImageCache
from geofeed.utils.datetime_utils import DateTimeUtils

# 업로드 목적별 저장 폴더
FOLDER_BY_UPLOAD_TYPE = {
    "profile_photo": "pfp",
    "post_image": "posts",
}

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}


class StorageService:
    """
    Firebase Storage 관련 로직을 담당하는 바이너리 객체 저장소 서비스입니다.
    업로드한 이미지는 공개 URL로 전환하고, 같은 바이트를 메모리 이미지 캐시에도 올려둡니다.
    """

    def __init__(self, image_cache: Optional[ImageCache] = None, bucket=None):
        """
        실제 버킷 객체는 init_app 메서드를 통해 주입됩니다.
        """
        self.bucket = bucket
        self.image_cache = image_cache

    def init_app(self, app: Flask):
        """
        Flask 앱 초기화 과정에서 호출되어 Storage 버킷을 설정합니다.

        :param app: Flask 애플리케이션 객체
        """
        bucket_name = app.config.get('FIREBASE_STORAGE_BUCKET')
        if not bucket_name:
            raise ValueError("FIREBASE_STORAGE_BUCKET 설정이 .env 또는 설정 파일에 필요합니다.")

        self.bucket = storage.bucket(bucket_name)
        logging.info("StorageService: Firebase Storage 서비스가 성공적으로 초기화되었습니다.")

    def build_path(self, upload_type: str) -> str:
        """
        업로드 타입에 맞는 폴더 아래 '<epoch-ms>_<랜덤>' 형식의 고유 경로를 만듭니다.

        :param upload_type: "profile_photo" 또는 "post_image"
        """
        folder = FOLDER_BY_UPLOAD_TYPE.get(upload_type)
        if not folder:
            raise ValidationError(f"'{upload_type}'은(는) 유효한 업로드 타입이 아닙니다.")
        suffix = ''.join(random.choice(string.ascii_lowercase + string.digits) for _ in range(7))
        return f"{folder}/{DateTimeUtils.now_ms()}_{suffix}"

    def upload(self, path: str, data: bytes, content_type: str = "image/jpeg") -> str:
        """
        바이트를 지정된 경로에 업로드하고 공개 URL을 반환합니다.

        :param path: 버킷 내 저장 경로
        :param data: 업로드할 파일 바이트
        :param content_type: MIME 타입
        :return: 공개적으로 접근 가능한 URL
        """
        if not self.bucket:
            raise RuntimeError("StorageService가 초기화되지 않았습니다. init_app을 먼저 호출해주세요.")
        if not data:
            raise ValidationError("업로드할 파일이 비어 있습니다.")
        if content_type not in ALLOWED_CONTENT_TYPES:
            raise ValidationError(f"지원하지 않는 이미지 형식입니다: {content_type}")

        blob = self.bucket.blob(path)
        with backend_call(f"Storage 업로드 ({path})"):
            blob.upload_from_string(data, content_type=content_type)
            blob.make_public()
        url = blob.public_url

        if self.image_cache is not None:
            self.image_cache.put(url, data)
        logging.info(f"Storage 업로드 완료 ({path})")
        return url

    def get_cached_image(self, url: str) -> Optional[bytes]:
        """메모리 이미지 캐시에서 URL에 해당하는 바이트를 조회합니다."""
        if self.image_cache is None:
            return None
        return self.image_cache.get(url)
