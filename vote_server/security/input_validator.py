# vote_server/security/input_validator.py

import re
import bleach
from datetime import datetime, timezone

from vote_server.errors import ValidationError

# Input validation and sanitization for request payloads.


class InputValidator:
    def __init__(self):
        self.allowed_html_tags = ['b', 'i', 'em', 'strong', 'p', 'br']
        self.allowed_html_attributes = {}

        self.patterns = {
            'email': re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'),
            'record_id': re.compile(r'^[A-Za-z0-9_-]{1,64}$'),
        }

    def sanitize_string(self, input_str, max_length=255):
        if input_str is None:
            return ''
        if not isinstance(input_str, str):
            raise ValidationError("Input must be a string")
        if len(input_str) > max_length:
            input_str = input_str[:max_length]
        sanitized = bleach.clean(input_str, tags=self.allowed_html_tags,
                                 attributes=self.allowed_html_attributes, strip=True)
        return sanitized.strip()

    def validate_email(self, email):
        return isinstance(email, str) and bool(self.patterns['email'].match(email.strip()))

    def normalize_email(self, email):
        if not self.validate_email(email):
            raise ValidationError("invalid email address")
        return email.strip().lower()

    def validate_record_id(self, value):
        return isinstance(value, str) and bool(self.patterns['record_id'].match(value))

    def require_fields(self, data, fields, message=None):
        """Raise if any of `fields` is missing or blank in `data`."""
        if not isinstance(data, dict):
            raise ValidationError("JSON object body required")
        missing = [f for f in fields if data.get(f) in (None, '')]
        if missing:
            raise ValidationError(message or f"{', '.join(fields)} required",
                                  payload={'missing': missing})
        return data

    def parse_datetime(self, value, field):
        """Parse an ISO-8601 timestamp into naive UTC."""
        if isinstance(value, datetime):
            parsed = value
        else:
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"{field} must be an ISO-8601 datetime")
            text = value.strip()
            if text.endswith('Z'):
                text = text[:-1] + '+00:00'
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError:
                raise ValidationError(f"{field} must be an ISO-8601 datetime")
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed

    def parse_bool(self, value, field):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{field} must be a boolean")

    def parse_int(self, value, field, default=None, minimum=None, maximum=None):
        if value in (None, ''):
            return default
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{field} must be an integer")
        if minimum is not None and number < minimum:
            raise ValidationError(f"{field} must be >= {minimum}")
        if maximum is not None and number > maximum:
            number = maximum
        return number
