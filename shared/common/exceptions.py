# shared/common/exceptions.py
"""
API error base class and the DRF exception handler.

Domain errors derive from ``BaseAPIException`` and carry their own
``status_code`` and ``error_code``. Whatever is raised, the client sees:

    {"success": false, "error": {"code": ..., "message": ..., "request_id": ...}}

with ``details`` added for field errors or structured extra data.
"""

import logging
from typing import Any, Dict, Optional

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)

STATUS_ERROR_CODES = {
    status.HTTP_400_BAD_REQUEST: 'VALIDATION_ERROR',
    status.HTTP_401_UNAUTHORIZED: 'UNAUTHORIZED',
    status.HTTP_403_FORBIDDEN: 'FORBIDDEN',
    status.HTTP_404_NOT_FOUND: 'NOT_FOUND',
    status.HTTP_405_METHOD_NOT_ALLOWED: 'METHOD_NOT_ALLOWED',
}


class BaseAPIException(APIException):
    """Base exception class for all custom API exceptions"""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'An unexpected error occurred.'
    default_code = 'error'
    error_code = 'INTERNAL_ERROR'

    def __init__(
        self,
        detail: Optional[str] = None,
        code: Optional[str] = None,
        error_code: Optional[str] = None,
        extra_data: Optional[Dict] = None
    ):
        super().__init__(detail=detail, code=code)
        self.error_code = error_code or self.error_code
        self.extra_data = extra_data or {}


def error_envelope(code: str, message: str, request_id: Optional[str] = None,
                   details: Any = None) -> Dict[str, Any]:
    error = {'code': code, 'message': message, 'request_id': request_id}
    if details:
        error['details'] = details
    return {'success': False, 'error': error}


def custom_exception_handler(exc, context) -> Optional[Response]:
    """
    DRF ``EXCEPTION_HANDLER``.

    DRF-known exceptions keep their status and get wrapped; Django's
    ``ValidationError`` and ``Http404`` are mapped to 400 and 404; anything
    else is logged with its traceback and answered with a 500 whose message
    is only revealed under ``DEBUG``.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    response = exception_handler(exc, context)
    if response is not None:
        code = getattr(exc, 'error_code', None) or STATUS_ERROR_CODES.get(response.status_code, 'ERROR')
        details = getattr(exc, 'extra_data', None)
        if not details and isinstance(response.data, dict) and 'detail' not in response.data:
            # Serializer field errors
            details = response.data
        response.data = error_envelope(code, _message(exc, response), request_id, details)
        return response

    if isinstance(exc, DjangoValidationError):
        details = exc.message_dict if hasattr(exc, 'error_dict') else {'detail': exc.messages}
        return Response(
            error_envelope('VALIDATION_ERROR', 'Validation error', request_id, details),
            status=status.HTTP_400_BAD_REQUEST,
        )

    if isinstance(exc, Http404):
        return Response(
            error_envelope('NOT_FOUND', str(exc) or 'Resource not found', request_id),
            status=status.HTTP_404_NOT_FOUND,
        )

    logger.exception(
        f"Unhandled exception: {exc}",
        extra={'request_id': request_id, 'exception_type': type(exc).__name__},
    )
    message = str(exc) if settings.DEBUG else 'An unexpected error occurred. Please try again later.'
    return Response(
        error_envelope('INTERNAL_ERROR', message, request_id),
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def _message(exc, response: Response) -> str:
    detail = getattr(exc, 'detail', None)
    if isinstance(detail, str):
        return detail
    if isinstance(detail, list) and detail:
        return str(detail[0])
    if isinstance(detail, dict):
        return str(detail['detail']) if 'detail' in detail else 'Invalid input.'
    if isinstance(response.data, dict):
        return str(response.data.get('detail', response.data))
    return str(response.data)
