from rest_framework import status
from rest_framework.exceptions import APIException


class OrderError(APIException):
    """Base class for order and table operation failures"""


class ValidationError(OrderError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid input.'
    default_code = 'validation_error'


class NotFoundError(OrderError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'
    default_code = 'not_found'


class ConflictError(OrderError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Conflicting state.'
    default_code = 'conflict'


class InternalError(OrderError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Internal server error.'
    default_code = 'internal_error'
