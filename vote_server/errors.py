# vote_server/errors.py

import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class VoteServerError(Exception):
    """Base error; every handler-level failure is rendered as {"error": message}."""
    status_code = 500

    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}

    def to_dict(self):
        body = dict(self.payload)
        body['error'] = self.message
        return body


class ValidationError(VoteServerError):
    status_code = 400


class AuthError(VoteServerError):
    status_code = 401

    def __init__(self, message='invalid credentials', reason='invalid_credentials', **kwargs):
        super().__init__(message, **kwargs)
        self.reason = reason


class ForbiddenError(VoteServerError):
    status_code = 403


class NotFoundError(VoteServerError):
    status_code = 404


class ConflictError(VoteServerError):
    status_code = 409


class RateLimitError(VoteServerError):
    status_code = 429

    def __init__(self, message='too many attempts, try again later', retry_after=None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class InternalError(VoteServerError):
    status_code = 500


def register_error_handlers(app):
    @app.errorhandler(VoteServerError)
    def handle_vote_server_error(error):
        response = jsonify(error.to_dict())
        response.status_code = error.status_code
        if isinstance(error, RateLimitError) and error.retry_after:
            response.headers['Retry-After'] = str(int(error.retry_after))
        return response

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        # Flask-Limiter raises a 429 HTTPException
        response = jsonify({'error': error.description or error.name})
        response.status_code = error.code or 500
        return response

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        logger.exception("Unhandled error: %s", error)
        return jsonify({'error': 'internal server error'}), 500
