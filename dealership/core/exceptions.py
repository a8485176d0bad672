"""
Business errors raised by the dealership engines.

Engine code raises these. api_exception_handler (wired as the DRF
EXCEPTION_HANDLER) is the only place that turns them into HTTP responses.
"""
import logging

from django.db import IntegrityError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class DealershipError(Exception):
    """Base class for every typed failure the engines can report"""
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'error'

    def __init__(self, message, field=None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self):
        data = {'error': self.code, 'message': self.message}
        if self.field:
            data['field'] = self.field
        return data


class NotFoundError(DealershipError):
    status_code = status.HTTP_404_NOT_FOUND
    code = 'not_found'


class ValidationError(DealershipError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'validation_error'


class ConflictError(DealershipError):
    status_code = status.HTTP_409_CONFLICT
    code = 'conflict'


class InsufficientStockError(DealershipError):
    status_code = status.HTTP_409_CONFLICT
    code = 'insufficient_stock'

    def __init__(self, message, field=None, available=None, requested=None):
        super().__init__(message, field=field)
        self.available = available
        self.requested = requested

    def to_dict(self):
        data = super().to_dict()
        if self.available is not None:
            data['available'] = self.available
        if self.requested is not None:
            data['requested'] = self.requested
        return data


class InvalidStateError(DealershipError):
    status_code = status.HTTP_409_CONFLICT
    code = 'invalid_state'


class InvalidTransitionError(InvalidStateError):
    code = 'invalid_transition'

    def __init__(self, current, requested, field='status'):
        super().__init__(f'Cannot transition from {current} to {requested}', field=field)
        self.current = current
        self.requested = requested

    def to_dict(self):
        data = super().to_dict()
        data['current'] = self.current
        data['requested'] = self.requested
        return data


class InternalError(DealershipError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = 'internal_error'


def api_exception_handler(exc, context):
    """Map engine errors to JSON responses, defer the rest to DRF"""
    if isinstance(exc, DealershipError):
        return Response(exc.to_dict(), status=exc.status_code)

    response = exception_handler(exc, context)
    if response is not None:
        return response

    view = context.get('view')
    view_name = view.__class__.__name__ if view else 'unknown view'

    if isinstance(exc, IntegrityError):
        logger.warning(f"Integrity error in {view_name}: {str(exc)}")
        error = ConflictError('The request conflicts with an existing record')
        return Response(error.to_dict(), status=error.status_code)

    logger.exception(f"Unhandled error in {view_name}: {str(exc)}")
    error = InternalError('An unexpected error occurred')
    return Response(error.to_dict(), status=error.status_code)
