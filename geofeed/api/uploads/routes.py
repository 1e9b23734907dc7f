# geofeed/api/uploads/routes.py

import mimetypes

from flask import request, jsonify, Blueprint, current_app, Response

from geofeed.api.auth.decorators import login_required
from geofeed.core.errors import NotFoundError

# 이 블루프린트에 속한 모든 API는 '/api/uploads' 라는 접두사 URL을 갖게 됩니다.
uploads_bp = Blueprint('uploads', __name__)


@uploads_bp.route('/post-image', methods=['POST'])
@login_required
def upload_post_image():
    """
    게시글에 첨부할 이미지를 업로드하고 공개 URL을 반환합니다.
    클라이언트는 받은 URL을 POST /api/posts 의 image_url로 사용합니다.
    """
    file = request.files.get('file')
    if file is None:
        return jsonify({
            "error_code": "INVALID_PARAMETERS",
            "message": "multipart/form-data의 'file' 필드가 필요합니다."
        }), 400

    image_url = current_app.services['posts'].upload_post_image(file.read(), file.mimetype)
    return jsonify({"image_url": image_url}), 201


@uploads_bp.route('/cached', methods=['GET'])
def get_cached_image():
    """
    이 프로세스가 업로드한 이미지를 메모리 캐시에서 바로 돌려줍니다.
    캐시에 없으면 404이며, 클라이언트는 원래 공개 URL에서 받아야 합니다.
    """
    url = request.args.get('url')
    if not url:
        return jsonify({
            "error_code": "INVALID_PARAMETERS",
            "message": "'url' 쿼리 파라미터가 필요합니다."
        }), 400

    data = current_app.services['storage'].get_cached_image(url)
    if data is None:
        raise NotFoundError("캐시된 이미지가 없습니다.")
    mimetype, _ = mimetypes.guess_type(url.split('?', 1)[0])
    return Response(data, mimetype=mimetype or 'application/octet-stream')
