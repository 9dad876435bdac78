import re
from typing import Optional

from rest_framework.exceptions import PermissionDenied

from clinic.models import Tenant

SUBDOMAIN_RE = re.compile(r'^[a-z0-9]([a-z0-9-]*[a-z0-9])?$')

RESERVED_SUBDOMAINS = frozenset({
    'www', 'api', 'admin', 'app', 'mail', 'ftp', 'blog',
    'support', 'help', 'docs', 'status', 'dev', 'staging',
    'test', 'demo', 'beta', 'alpha', 'portal', 'dashboard',
})


def is_valid_subdomain(subdomain: str) -> bool:
    return bool(subdomain) and len(subdomain) <= 63 and bool(SUBDOMAIN_RE.match(subdomain))


def is_reserved_subdomain(subdomain: str) -> bool:
    return subdomain.lower() in RESERVED_SUBDOMAINS


def check_subdomain(subdomain: str) -> dict:
    """Availability answer for the signup form.

    Format and reservation problems are answers (``available: False``),
    not errors.
    """
    if not is_valid_subdomain(subdomain):
        return {'available': False, 'error': 'Invalid subdomain format'}
    if is_reserved_subdomain(subdomain):
        return {'available': False, 'error': 'This subdomain is reserved'}
    return {'available': not Tenant.objects.filter(subdomain=subdomain).exists()}


def subdomain_from_host(host: str, base_domain: str) -> Optional[str]:
    """Extract ``clinic`` from ``clinic.<base_domain>[:port]``."""
    if not host or not base_domain:
        return None
    host = host.split(':', 1)[0].lower()
    suffix = '.' + base_domain.lower().lstrip('.')
    if not host.endswith(suffix):
        return None
    label = host[: -len(suffix)]
    if not label or '.' in label:
        return None
    return label


def require_tenant(user) -> Tenant:
    """The clinic new rows are created in; the platform operator has none."""
    tenant = getattr(user, 'tenant', None)
    if tenant is None:
        raise PermissionDenied('user is not bound to a clinic')
    return tenant
