from django.conf import settings

from .models import Tenant
from .services.tenants import subdomain_from_host, is_reserved_subdomain


class TenantSubdomainMiddleware:
    """Attach the clinic addressed by the request's subdomain as ``request.tenant``.

    ``clinic-a.example.com`` resolves to the tenant with subdomain
    ``clinic-a`` when ``TENANT_BASE_DOMAIN`` is ``example.com``.  Requests
    on the bare domain, reserved names or unknown subdomains get ``None``.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request.tenant = None
        subdomain = subdomain_from_host(request.get_host(), getattr(settings, 'TENANT_BASE_DOMAIN', ''))
        if subdomain and not is_reserved_subdomain(subdomain):
            request.tenant = Tenant.objects.filter(subdomain=subdomain).first()
        return self.get_response(request)
