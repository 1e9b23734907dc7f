# geofeed/api/posts/test_post_service.py
from datetime import datetime, timezone

import pytest

from conftest import make_post_doc
from geofeed.api.posts.services import FEED_KEY, author_feed_key
from geofeed.core.errors import NetworkError, PermissionDeniedError, ValidationError


def test_list_feed_is_newest_first(services, documents):
    documents.seed('posts', 'old', make_post_doc('a', 'A', datetime(2024, 1, 1, tzinfo=timezone.utc)))
    documents.seed('posts', 'new', make_post_doc('b', 'B', datetime(2024, 2, 1, tzinfo=timezone.utc)))

    posts = services['posts'].list_feed()

    assert [post.post_id for post in posts] == ['new', 'old']
    state = services['session'].feed_state(FEED_KEY)
    assert state.loading is False
    assert state.last_loaded_at is not None


def test_list_by_author_filters(services, seed_posts):
    seed_posts('alice', 2)
    seed_posts('bob', 1)
    posts = services['posts'].list_by_author('alice')
    assert len(posts) == 2
    assert all(post.author_id == 'alice' for post in posts)


def test_missing_optional_fields_get_defaults(services, documents):
    documents.seed('posts', 'bare', {'userId': 'a', 'username': 'A',
                                     'createdAt': datetime(2024, 1, 1, tzinfo=timezone.utc)})
    [post] = services['posts'].list_feed()
    assert post.description == ""
    assert post.like_count == 0
    assert post.liked_by == set()
    assert post.author_photo_url is None
    assert post.location is None


def test_failed_load_sets_error_state_unless_silent(services, documents):
    documents.fail_next('list_collection', NetworkError())
    with pytest.raises(NetworkError):
        services['posts'].list_feed()
    assert services['session'].feed_state(FEED_KEY).error is not None

    # silent 재조회는 로딩/오류 상태를 바꾸지 않는다
    documents.fail_next('query_by_field', NetworkError())
    with pytest.raises(NetworkError):
        services['posts'].list_by_author('alice', silent=True)
    assert services['session'].feed_state(author_feed_key('alice')).error is None


def test_create_post_snapshots_author_profile(services, sign_in, documents):
    sign_in('alice', display_name='앨리스', photo_url='https://img.example.com/a.jpg')
    post = services['posts'].create_post(
        'alice', '한강 산책', None, {'latitude': 37.52, 'longitude': 126.93, 'address': '서울 영등포구'})

    stored = documents.get_document('posts', post.post_id)
    assert stored['username'] == '앨리스'
    assert stored['userProfileImage'] == 'https://img.example.com/a.jpg'
    assert stored['location']['address'] == '서울 영등포구'
    assert stored['likes'] == 0
    assert stored['likedBy'] == []


def test_create_post_without_photo_omits_key(services, sign_in, documents):
    sign_in('bob', display_name='밥')
    post = services['posts'].create_post('bob', '글', None, None)
    assert 'userProfileImage' not in documents.get_document('posts', post.post_id)


def test_create_post_requires_content(services, sign_in):
    sign_in('alice')
    with pytest.raises(ValidationError):
        services['posts'].create_post('alice', '  ', None, None)


def test_only_author_can_update_or_delete(services, seed_posts, documents):
    [post_id] = seed_posts('alice', 1)
    with pytest.raises(PermissionDeniedError):
        services['posts'].update_post(post_id, 'mallory', '수정', None, None)
    with pytest.raises(PermissionDeniedError):
        services['posts'].delete_post(post_id, 'mallory')

    updated = services['posts'].update_post(post_id, 'alice', '수정된 설명', None, None)
    assert updated.description == '수정된 설명'
    assert documents.get_document('posts', post_id)['updatedAt'] is not None

    services['posts'].delete_post(post_id, 'alice')
    assert documents.get_document('posts', post_id) is None


def test_count_posts_by_author(services, seed_posts):
    seed_posts('alice', 3)
    assert services['posts'].count_posts_by_author('alice') == 3
    assert services['posts'].count_posts_by_author('nobody') == 0
