"""Shared helpers: audit logging, note stamping and list pagination"""
import logging
from datetime import datetime

from django.core.paginator import Paginator
from django.db import DEFAULT_DB_ALIAS, transaction
from django.utils import timezone

from .exceptions import ValidationError
from .models import AuditLog

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def get_client_ip(request):
    """Extract client IP address from request"""
    if not request or not hasattr(request, 'META'):
        return None
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR')
    return ip or None


def create_audit_log(request=None, action=None, model_name=None, object_id=None,
                     changes=None, user=None, object_name=None, object_reference=None,
                     using=None):
    """
    Create an audit log entry

    Args:
        request: Django request object (for user and IP) - optional if user is provided
        action: Action type (order_create, stock_adjust, service_cancel, etc.)
        model_name: Name of the model being acted upon
        object_id: ID of the object (as string)
        changes: Dictionary of changes made
        user: Optional user override (defaults to request.user if request provided)
        object_name: Human-readable name of the object (e.g., car, part name)
        object_reference: Reference identifier (e.g., order number, VIN)
        using: Database alias to write to
    """
    if not action or not model_name or not object_id:
        logger.warning(f"Audit log creation skipped: missing required fields (action={action}, model_name={model_name}, object_id={object_id})")
        return None

    audit_user = user
    if audit_user is None and request is not None and hasattr(request, 'user'):
        audit_user = request.user

    alias = using or DEFAULT_DB_ALIAS
    try:
        # Savepoint so a failed insert does not poison an enclosing transaction
        with transaction.atomic(using=alias):
            return AuditLog.objects.using(alias).create(
                user=audit_user if audit_user and audit_user.is_authenticated else None,
                action=action,
                model_name=model_name,
                object_id=str(object_id),
                object_name=object_name,
                object_reference=object_reference,
                changes=changes or {},
                ip_address=get_client_ip(request) if request else None,
            )
    except Exception as e:
        # Audit trail must never break the main operation
        logger.error(f"Failed to create audit log: {str(e)}")
        return None


def append_note(existing, text, label=None, now=None):
    """
    Append a timestamped entry to a free-text notes field.

    Existing content is never overwritten; entries are separated by a blank line.
    """
    stamp = (now or timezone.now()).isoformat()
    entry = f"{label} on {stamp}: {text}" if label else f"{stamp}: {text}"
    if existing:
        return f"{existing}\n\n{entry}"
    return entry


def paginate(request, queryset, serializer_class, context=None):
    """Page a queryset using ?page=&limit= and return the response payload"""
    try:
        page = max(int(request.query_params.get('page', 1)), 1)
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(request.query_params.get('limit', DEFAULT_PAGE_SIZE))
    except (TypeError, ValueError):
        limit = DEFAULT_PAGE_SIZE
    limit = min(max(limit, 1), MAX_PAGE_SIZE)

    paginator = Paginator(queryset, limit)
    page_obj = paginator.get_page(page)

    serializer = serializer_class(page_obj, many=True, context=context or {'request': request})
    return {
        'results': serializer.data,
        'count': paginator.count,
        'next': page_obj.next_page_number() if page_obj.has_next() else None,
        'previous': page_obj.previous_page_number() if page_obj.has_previous() else None,
        'page': page_obj.number,
        'page_size': limit,
        'total_pages': paginator.num_pages,
    }


def parse_date_param(value, field):
    """Parse a YYYY-MM-DD query parameter, None when absent"""
    if not value:
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError(f'{field} must be a date in YYYY-MM-DD format', field=field)
