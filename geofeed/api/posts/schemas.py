# geofeed/api/posts/schemas.py
from marshmallow import Schema, fields, validate, validates_schema, ValidationError

# --- 재사용을 위한 중첩 스키마 ---
class LocationSchema(Schema):
    """게시물에 첨부되는 위치 정보 스키마."""
    latitude = fields.Float(required=True, validate=validate.Range(min=-90, max=90))
    longitude = fields.Float(required=True, validate=validate.Range(min=-180, max=180))
    address = fields.Str(allow_none=True)

# --- API 요청/응답 스키마 ---

class PostCreateSchema(Schema):
    """POST /api/posts 요청 본문의 유효성을 검사합니다."""
    description = fields.Str(load_default="", validate=validate.Length(max=2000))
    image_url = fields.Url(load_default=None, allow_none=True, schemes={"http", "https"})
    location = fields.Nested(LocationSchema, load_default=None, allow_none=True)

    @validates_schema(skip_on_field_errors=False)
    def validate_content(self, data, **kwargs):
        if not (data.get('description') or '').strip() and not data.get('image_url'):
            raise ValidationError("게시글에는 설명 또는 이미지가 필요합니다.", field_name="description")

class PostUpdateSchema(PostCreateSchema):
    """PATCH /api/posts/{post_id} 요청 본문의 유효성을 검사합니다."""

class PostResponseSchema(Schema):
    """게시글 정보 응답을 위한 최종 JSON 형식을 정의합니다."""
    post_id = fields.Str(dump_only=True)
    author_id = fields.Str(required=True)
    author_display_name = fields.Str(required=True)
    author_photo_url = fields.Str(allow_none=True)
    description = fields.Str()
    image_url = fields.Str(allow_none=True)
    location = fields.Nested(LocationSchema, allow_none=True)
    created_at = fields.DateTime(required=True)
    updated_at = fields.DateTime(allow_none=True)
    like_count = fields.Int(required=True)
    liked_by = fields.Method("get_liked_by")
    is_liked = fields.Bool(dump_only=True, dump_default=False)

    def get_liked_by(self, obj):
        return sorted(obj.liked_by)

class LikeToggleResponseSchema(Schema):
    post_id = fields.Str()
    liked = fields.Bool()
    like_count = fields.Int()
