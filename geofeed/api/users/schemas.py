# geofeed/api/users/schemas.py
from marshmallow import Schema, fields, validate

from geofeed.api.users.services import MAX_DISPLAY_NAME_LENGTH

class UserPublicResponseSchema(Schema):
    """
    GET /api/users/{user_id}
    다른 사용자의 프로필 정보를 응답할 때 사용하는 스키마.
    이메일/전화번호 같은 민감한 정보는 제외합니다.
    """
    user_id = fields.Str(required=True, dump_only=True)
    display_name = fields.Str(required=True)
    photo_url = fields.Str(allow_none=True)
    post_count = fields.Int(required=True)

class RegisterProfileSchema(Schema):
    """POST /api/users/register"""
    phone_number = fields.Str(load_default=None, allow_none=True)

class DisplayNameUpdateSchema(Schema):
    """PATCH /api/users/me/display-name"""
    display_name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=MAX_DISPLAY_NAME_LENGTH),
        error_messages={"required": "display_name은 필수 항목입니다."}
    )

class PhotoUpdateSchema(Schema):
    """PATCH /api/users/me/photo. 사진 제거는 DELETE /api/users/me/photo를 사용합니다."""
    photo_url = fields.Url(
        required=True,
        schemes={"http", "https"},
        error_messages={"required": "photo_url은 필수 항목입니다."}
    )

class ProfileUpdateSchema(Schema):
    """PATCH /api/users/me"""
    display_name = fields.Str(validate=validate.Length(min=1, max=MAX_DISPLAY_NAME_LENGTH))
    email = fields.Email()
    phone_number = fields.Str(allow_none=True)
    # 최근 로그인이 아닐 때 이메일 변경을 위한 재인증에 사용됩니다.
    current_password = fields.Str(load_only=True)

class PropagationResultSchema(Schema):
    total_posts = fields.Int()
    committed_chunks = fields.Int()
    failed_chunks = fields.Int()
    failed_post_ids = fields.List(fields.Str())

class PhotoOverrideStatusSchema(Schema):
    """POST /api/users/me/refresh 응답에 포함되는 사진 제거 오버라이드 상태"""
    force_photo_absent = fields.Bool()
    last_updated = fields.DateTime(allow_none=True)
