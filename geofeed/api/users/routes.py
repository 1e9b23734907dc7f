# geofeed/api/users/routes.py
import logging
from flask import Blueprint, request, jsonify, current_app

from geofeed.api.auth.decorators import login_required
from geofeed.api.auth.schemas import SessionUserSchema
from geofeed.api.users.schemas import (
    UserPublicResponseSchema, RegisterProfileSchema, DisplayNameUpdateSchema,
    PhotoUpdateSchema, ProfileUpdateSchema, PropagationResultSchema, PhotoOverrideStatusSchema
)

users_bp = Blueprint('users_bp', __name__)


@users_bp.route('/register', methods=['POST'])
@login_required
def register_profile():
    """회원가입 직후 프로필 문서를 생성합니다."""
    data = RegisterProfileSchema().load(request.get_json(silent=True) or {})
    user = current_app.services['identity_sync'].register_profile(data['phone_number'])
    return jsonify(SessionUserSchema().dump(user)), 201


@users_bp.route('/<string:user_id>', methods=['GET'])
def get_user_profile(user_id: str):
    """특정 사용자의 공개 프로필 정보(게시물 수 포함)를 조회합니다."""
    profile = current_app.services['identity_sync'].get_profile(user_id)
    return jsonify(UserPublicResponseSchema().dump(profile)), 200


@users_bp.route('/me/refresh', methods=['POST'])
@login_required
def refresh_my_identity():
    """
    프로필 화면 진입 시 호출됩니다.
    로컬 캐시를 비우고 신원 레코드와 프로필 문서를 다시 맞춘 뒤 병합된 사용자 정보를 반환합니다.
    사진 제거가 아직 확인되지 않아 오버라이드가 유지 중이면 photo_override에 그 상태가 담깁니다.
    """
    user = current_app.services['identity_sync'].refresh_identity()
    response = SessionUserSchema().dump(user)
    override = current_app.services['overrides'].status()
    response['photo_override'] = PhotoOverrideStatusSchema().dump(override) if override else None
    return jsonify(response), 200


@users_bp.route('/me/display-name', methods=['PATCH'])
@login_required
def update_my_display_name():
    data = DisplayNameUpdateSchema().load(request.get_json() or {})
    user = current_app.services['identity_sync'].set_display_name(data['display_name'])
    return jsonify(SessionUserSchema().dump(user)), 200


@users_bp.route('/me/photo', methods=['PATCH'])
@login_required
def update_my_photo():
    data = PhotoUpdateSchema().load(request.get_json() or {})
    user = current_app.services['identity_sync'].set_photo_url(data['photo_url'])
    return jsonify(SessionUserSchema().dump(user)), 200


@users_bp.route('/me/photo', methods=['DELETE'])
@login_required
def remove_my_photo():
    user = current_app.services['identity_sync'].set_photo_url(None)
    return jsonify(SessionUserSchema().dump(user)), 200


@users_bp.route('/me/photo/upload', methods=['POST'])
@login_required
def upload_my_photo():
    """multipart/form-data의 'file' 필드로 받은 이미지를 업로드하고 프로필 사진으로 설정합니다."""
    file = request.files.get('file')
    if file is None:
        return jsonify({"error_code": "INVALID_PAYLOAD", "message": "'file' 필드가 필요합니다."}), 400
    user = current_app.services['identity_sync'].upload_profile_photo(file.read(), file.mimetype)
    return jsonify(SessionUserSchema().dump(user)), 200


@users_bp.route('/me', methods=['PATCH'])
@login_required
def update_my_profile():
    data = ProfileUpdateSchema().load(request.get_json() or {})
    user = current_app.services['identity_sync'].update_profile(**data)
    return jsonify(SessionUserSchema().dump(user)), 200


@users_bp.route('/me/propagation/retry', methods=['POST'])
@login_required
def retry_my_propagation():
    """부분 실패한 게시글 전파를 프로필 문서의 현재 값으로 다시 시도합니다."""
    result = current_app.services['identity_sync'].retry_propagation()
    logging.info(f"게시글 전파 재시도 완료 (게시글: {result.total_posts})")
    return jsonify(PropagationResultSchema().dump(result)), 200
