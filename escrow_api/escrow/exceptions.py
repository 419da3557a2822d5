"""
Error taxonomy for escrow operations.

Every user-facing failure is an ``EscrowError`` (a DRF ``APIException``) with a
stable ``kind``; the project-wide exception handler renders it as
``{"error": <kind>, "detail": <message>}``. ``LedgerInvariantError`` is an
internal failure; it is not an ``APIException`` and surfaces as a 500.
"""
import logging

from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class EscrowError(exceptions.APIException):
    kind = 'EscrowError'

    def __init__(self, detail=None):
        super().__init__(detail=detail, code=self.kind)


class Unauthorized(EscrowError):
    status_code = status.HTTP_403_FORBIDDEN
    kind = 'Unauthorized'
    default_detail = 'You are not allowed to perform this operation on this project.'


class InvalidAmount(EscrowError):
    status_code = status.HTTP_400_BAD_REQUEST
    kind = 'InvalidAmount'
    default_detail = 'Amount must be greater than zero.'


class InsufficientFunds(EscrowError):
    status_code = status.HTTP_409_CONFLICT
    kind = 'InsufficientFunds'
    default_detail = 'Release amount exceeds the held escrow balance.'


class InvalidStateTransition(EscrowError):
    status_code = status.HTTP_409_CONFLICT
    kind = 'InvalidStateTransition'
    default_detail = 'Operation is not allowed in the current state.'


class DuplicateRequest(EscrowError):
    status_code = status.HTTP_409_CONFLICT
    kind = 'DuplicateRequest'
    default_detail = 'An open release request already exists for this milestone.'


class NotFound(EscrowError):
    status_code = status.HTTP_404_NOT_FOUND
    kind = 'NotFound'
    default_detail = 'Not found.'


class LedgerInvariantError(Exception):
    """Raised when a ledger mutation would break held + released == total funded."""


def _error_kind(exc, data):
    if isinstance(exc, EscrowError):
        return exc.kind
    if isinstance(exc, (Http404, exceptions.NotFound)):
        return NotFound.kind
    if isinstance(exc, (DjangoPermissionDenied, exceptions.PermissionDenied)):
        return Unauthorized.kind
    if isinstance(exc, (exceptions.NotAuthenticated, exceptions.AuthenticationFailed)):
        return 'Unauthenticated'
    if isinstance(exc, exceptions.ValidationError):
        if isinstance(data, dict) and 'amount' in data:
            return InvalidAmount.kind
        return 'ValidationError'
    return exc.__class__.__name__


def escrow_exception_handler(exc, context):
    response = exception_handler(exc, context)

    if response is None:
        if isinstance(exc, LedgerInvariantError):
            logger.error(
                f"Ledger invariant violated, operation aborted: {exc}",
                extra={'view': context.get('view').__class__.__name__},
            )
            return Response(
                {'error': 'InternalError', 'detail': 'Escrow ledger check failed; nothing was changed.'},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return None

    data = response.data
    kind = _error_kind(exc, data)
    if isinstance(data, dict) and set(data) == {'detail'}:
        detail = data['detail']
    else:
        detail = data
    response.data = {'error': kind, 'detail': detail}
    return response
