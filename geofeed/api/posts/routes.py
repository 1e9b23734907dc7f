# geofeed/api/posts/routes.py
import logging
from typing import List

from flask import Blueprint, request, jsonify, current_app, Response

from geofeed.api.auth.decorators import login_required, get_current_user_id
from geofeed.api.posts.schemas import PostCreateSchema, PostUpdateSchema, PostResponseSchema, LikeToggleResponseSchema
from geofeed.models.post import Post

posts_bp = Blueprint('posts_bp', __name__)


def _is_silent() -> bool:
    return request.args.get('silent', '').lower() in ('1', 'true', 'yes')


def _dump_posts(posts: List[Post]) -> List[dict]:
    """좋아요 여부는 세션 오버라이드를 반영해 계산합니다."""
    like_service = current_app.services['likes']
    uid = current_app.services['session'].uid
    schema = PostResponseSchema()
    result = []
    for post in posts:
        data = schema.dump(post)
        data['is_liked'] = like_service.is_liked(post, uid) if uid else False
        result.append(data)
    return result


@posts_bp.route('', methods=['GET'])
def get_feed():
    """
    전체 피드를 최신순으로 조회합니다.
    ?silent=1 은 화면 포커스 복귀 시의 백그라운드 재조회로, 로딩/오류 상태를 바꾸지 않습니다.
    """
    posts = current_app.services['posts'].list_feed(silent=_is_silent())
    return jsonify(_dump_posts(posts)), 200


@posts_bp.route('/by/<string:user_id>', methods=['GET'])
def get_posts_by_author(user_id: str):
    posts = current_app.services['posts'].list_by_author(user_id, silent=_is_silent())
    return jsonify(_dump_posts(posts)), 200


@posts_bp.route('', methods=['POST'])
@login_required
def create_post():
    data = PostCreateSchema().load(request.get_json() or {})
    post = current_app.services['posts'].create_post(get_current_user_id(), **data)
    return jsonify(_dump_posts([post])[0]), 201


@posts_bp.route('/<string:post_id>', methods=['PATCH'])
@login_required
def update_post(post_id: str):
    data = PostUpdateSchema().load(request.get_json() or {})
    post = current_app.services['posts'].update_post(post_id, get_current_user_id(), **data)
    return jsonify(_dump_posts([post])[0]), 200


@posts_bp.route('/<string:post_id>', methods=['DELETE'])
@login_required
def delete_post(post_id: str):
    current_app.services['posts'].delete_post(post_id, get_current_user_id())
    return Response(status=204)


@posts_bp.route('/<string:post_id>/like', methods=['POST'])
@login_required
def toggle_like(post_id: str):
    """좋아요 상태를 뒤집습니다. 서버 갱신이 실패하면 세션 오버라이드만 되돌리고 오류를 반환합니다."""
    user_id = get_current_user_id()
    post = current_app.services['posts'].get_post(post_id)
    liked, post = current_app.services['likes'].toggle_like(post, user_id)
    logging.info(f"좋아요 토글 응답 (post_id: {post_id}, liked: {liked})")
    return jsonify(LikeToggleResponseSchema().dump({
        "post_id": post_id,
        "liked": liked,
        "like_count": post.like_count,
    })), 200
