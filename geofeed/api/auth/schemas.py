# geofeed/api/auth/schemas.py
from marshmallow import Schema, fields

class SessionStartSchema(Schema):
    """POST /api/auth/session, POST /api/auth/token/refresh 요청 본문"""
    id_token = fields.Str(
        required=True,
        error_messages={"required": "id_token은 필수 항목입니다."},
        metadata={"description": "클라이언트 로그인 후 받은 Firebase ID 토큰"}
    )

class SessionUserSchema(Schema):
    """세션 사용자(병합된 User 뷰) 응답"""
    user_id = fields.Str(required=True)
    email = fields.Str(allow_none=True)
    display_name = fields.Str(allow_none=True)
    photo_url = fields.Str(allow_none=True)
    phone_number = fields.Str(allow_none=True)
    created_at = fields.DateTime()
