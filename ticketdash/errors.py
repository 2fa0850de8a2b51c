from __future__ import annotations
import logging

from flask import Flask, jsonify
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

log = logging.getLogger(__name__)


class ApiError(Exception):
    """An error that is rendered straight to the client."""
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidInput(ApiError):
    status_code = 400


class Unauthorized(ApiError):
    status_code = 401


class Forbidden(ApiError):
    status_code = 403


class NotFound(ApiError):
    status_code = 404


class RestError(Exception):
    """Non-2xx response from the Discord REST API, or no response at all (status 0)."""

    def __init__(self, status_code: int, message: str = "", code: int = 0):
        super().__init__(f"{status_code}: {message}" if message else str(status_code))
        self.status_code = status_code
        self.message = message
        self.code = code

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def is_client_error(self) -> bool:
        """4xx other than 429."""
        return 400 <= self.status_code < 500 and not self.is_rate_limited


def error_body(message: str) -> dict:
    return {"success": False, "error": message}


def format_validation_errors(err: ValidationError) -> str:
    lines = []
    for e in err.errors():
        loc = ".".join(str(p) for p in e["loc"]) or "body"
        lines.append(f"{loc}: {e['msg']}")
    return "Your input contained the following errors:\n" + "\n".join(lines)


def register_error_handlers(app: Flask):
    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):
        return jsonify(error_body(e.message)), e.status_code

    @app.errorhandler(ValidationError)
    def _validation_error(e: ValidationError):
        return jsonify(error_body(format_validation_errors(e))), 400

    @app.errorhandler(RestError)
    def _rest_error(e: RestError):
        log.error("Unhandled Discord API error: %s", e)
        return jsonify(error_body(str(e))), 500

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        return jsonify(error_body(e.description or e.name)), e.code

    @app.errorhandler(Exception)
    def _internal(e: Exception):
        log.exception("Unhandled error while serving request")
        return jsonify(error_body("An internal server error occurred")), 500
