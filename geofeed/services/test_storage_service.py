# geofeed/services/test_storage_service.py
import pytest

from conftest import FakeBucket
from geofeed.core.errors import ValidationError
from geofeed.services.cache_service import ImageCache
from geofeed.services.storage_service import StorageService


def test_upload_makes_public_and_caches_bytes():
    bucket = FakeBucket()
    service = StorageService(image_cache=ImageCache(), bucket=bucket)
    path = service.build_path("profile_photo")

    url = service.upload(path, b'\xff\xd8\xff', 'image/jpeg')

    assert path.startswith('pfp/')
    assert bucket.objects[path] == (b'\xff\xd8\xff', 'image/jpeg')
    assert service.get_cached_image(url) == b'\xff\xd8\xff'


def test_build_path_is_unique_per_call():
    service = StorageService(bucket=FakeBucket())
    paths = {service.build_path("post_image") for _ in range(20)}
    assert len(paths) == 20
    assert all(path.startswith('posts/') for path in paths)


def test_rejects_unknown_upload_type_and_empty_files():
    service = StorageService(bucket=FakeBucket())
    with pytest.raises(ValidationError):
        service.build_path("avatar")
    with pytest.raises(ValidationError):
        service.upload('posts/x', b'', 'image/png')


def test_upload_requires_init():
    with pytest.raises(RuntimeError):
        StorageService().upload('posts/x', b'x', 'image/png')
