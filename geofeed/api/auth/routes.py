# geofeed/api/auth/routes.py

import logging
from flask import Blueprint, request, jsonify, current_app, Response

from geofeed.api.auth.schemas import SessionStartSchema, SessionUserSchema

auth_bp = Blueprint('auth_bp', __name__)


def _session_user_response():
    user = current_app.services['session'].current_user
    return SessionUserSchema().dump(user) if user else None


@auth_bp.route('/session', methods=['POST'])
def start_session():
    """로그인 후 받은 ID 토큰으로 세션을 시작합니다. 신원 재조정은 이벤트 콜백에서 수행됩니다."""
    data = SessionStartSchema().load(request.get_json() or {})
    identity = current_app.services['identity'].start_session(data['id_token'])
    return jsonify({"user_id": identity['uid'], "user": _session_user_response()}), 200


# --- 토큰 재발급 엔드포인트 ---
@auth_bp.route('/token/refresh', methods=['POST'])
def refresh_token():
    """같은 사용자의 새 ID 토큰을 등록합니다. 토큰 갱신도 재조정 이벤트를 발생시킵니다."""
    data = SessionStartSchema().load(request.get_json() or {})
    identity = current_app.services['identity'].refresh_session(data['id_token'])
    return jsonify({"user_id": identity['uid'], "user": _session_user_response()}), 200


# --- 로그아웃 엔드포인트 ---
@auth_bp.route('/logout', methods=['POST'])
def logout():
    current_app.services['identity'].end_session()
    logging.info("로그아웃 처리 완료")
    return Response(status=204)
