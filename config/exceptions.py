import logging

from django.db import DatabaseError
from django.db.models import ProtectedError, RestrictedError
from rest_framework.views import exception_handler

from enrollment.exceptions import ConflictError, InternalError

logger = logging.getLogger(__name__)


def api_exception_handler(exc, context):
    """
    DRF exception handler for datastore failures.

    Deleting a row that other records still reference is a 409; any other
    DatabaseError becomes a 500. The enclosing atomic block has already been
    rolled back by the time the exception reaches this handler.
    """
    if isinstance(exc, (ProtectedError, RestrictedError)):
        exc = ConflictError("This record is still referenced by enrollment requests or enrollments and cannot be deleted.")
    elif isinstance(exc, DatabaseError):
        view = context.get('view')
        logger.exception(f"Datastore failure in {view.__class__.__name__ if view else 'unknown view'}")
        exc = InternalError()
    return exception_handler(exc, context)
