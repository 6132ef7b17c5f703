import re
from typing import Optional, Any

from .config import settings
from .errors import ValidationException, ValidationError

_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')


class Validator:
    """입력 검증을 위한 유틸리티 클래스"""

    @staticmethod
    def validate_required(value: Any, field_name: str) -> Any:
        """필수 필드 검증"""
        if value is None or (isinstance(value, str) and value.strip() == ""):
            raise ValidationException(
                f"{field_name} is required",
                validation_errors=[
                    ValidationError(field=field_name, message="This field is required", value=value)
                ]
            )
        return value

    @staticmethod
    def validate_string_type(value: Any, field_name: str) -> Optional[str]:
        """문자열 타입 검증 (None은 통과)"""
        if value is not None and not isinstance(value, str):
            raise ValidationException(
                f"{field_name} must be a string",
                validation_errors=[
                    ValidationError(field=field_name, message="This field must be a string", value=repr(value))
                ]
            )
        return value

    @staticmethod
    def validate_string_length(
        value: str,
        field_name: str,
        min_length: Optional[int] = None,
        max_length: Optional[int] = None
    ) -> str:
        """문자열 길이 검증"""
        errors = []

        if min_length and len(value) < min_length:
            errors.append(
                ValidationError(
                    field=field_name,
                    message=f"Must be at least {min_length} characters long",
                    value=len(value)
                )
            )

        if max_length and len(value) > max_length:
            errors.append(
                ValidationError(
                    field=field_name,
                    message=f"Must be no more than {max_length} characters long",
                    value=len(value)
                )
            )

        if errors:
            raise ValidationException(
                f"{field_name} length validation failed",
                validation_errors=errors
            )

        return value

    @staticmethod
    def validate_message_content(content: Optional[str], field_name: str = "content") -> str:
        """메시지 내용 검증 (앞뒤 공백 제거 후 반환)"""
        errors = []
        stripped = (Validator.validate_string_type(content, field_name) or "").strip()
        max_length = settings.max_message_length

        if not stripped:
            errors.append(
                ValidationError(
                    field=field_name,
                    message="Message content cannot be empty"
                )
            )

        if len(stripped) > max_length:
            errors.append(
                ValidationError(
                    field=field_name,
                    message=f"Message content must be no more than {max_length} characters",
                    value=len(stripped)
                )
            )

        if _CONTROL_CHARS.search(stripped):
            errors.append(
                ValidationError(
                    field=field_name,
                    message="Message content contains invalid control characters"
                )
            )

        if errors:
            raise ValidationException(
                "Message content validation failed",
                validation_errors=errors
            )

        return stripped

    @staticmethod
    def validate_reaction_kind(kind: Optional[str], field_name: str = "kind") -> str:
        """반응 종류 검증 (이모지 또는 짧은 토큰)"""
        kind = (Validator.validate_string_type(kind, field_name) or "").strip()
        Validator.validate_required(kind, field_name)
        Validator.validate_string_length(kind, field_name, max_length=settings.max_reaction_length)
        if any(ch.isspace() for ch in kind) or _CONTROL_CHARS.search(kind):
            raise ValidationException(
                "Reaction validation failed",
                validation_errors=[
                    ValidationError(field=field_name, message="Reaction must be a single token", value=kind)
                ]
            )
        return kind

    @staticmethod
    def validate_room_name(name: Optional[str], field_name: str = "name") -> str:
        """그룹 채팅방 이름 검증"""
        name = (Validator.validate_string_type(name, field_name) or "").strip()
        Validator.validate_required(name, field_name)
        return Validator.validate_string_length(name, field_name, max_length=255)
