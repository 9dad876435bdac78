"""
Self-serve signup and subscription endpoints.

The signup flow is: check the subdomain, create a Stripe checkout
session, and after payment poll ``setup-status`` until the webhook has
provisioned the clinic.  Clinic administrators manage payment details
through the Stripe billing portal.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, PermissionDenied
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from clinic.models import Tenant
from clinic.permissions import IsClinicAdmin, is_super_admin
from clinic.serializers.signup import (
    CheckoutSessionSerializer,
    PortalSessionSerializer,
    SetupStatusSerializer,
    SubdomainCheckSerializer,
)
from clinic.services import stripe_billing
from clinic.services.subscription import evaluate_access
from clinic.services.tenants import check_subdomain
from clinic.throttling import throttle_scope


@throttle_scope('signup')
@api_view(['POST'])
@permission_classes([AllowAny])
def check_subdomain_view(request):
    s = SubdomainCheckSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return Response(check_subdomain(s.validated_data['subdomain'].lower()))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def billing_access(request):
    """Subscription guard decision for the signed-in user."""
    return Response(evaluate_access(request.user).as_dict())


@throttle_scope('signup')
@api_view(['POST'])
@permission_classes([AllowAny])
def create_checkout_session(request):
    s = CheckoutSessionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    return Response(stripe_billing.create_checkout_session(
        email=vd['email'], clinic_name=vd['clinicName'], subdomain=vd['subdomain'],
    ))


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicAdmin])
def create_portal_session(request):
    s = PortalSessionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    tenant_id = s.validated_data.get('tenantId')
    if tenant_id and tenant_id != request.user.tenant_id:
        if not is_super_admin(request.user):
            raise PermissionDenied('cannot manage billing of another clinic')
        tenant = Tenant.objects.filter(pk=tenant_id).first()
    else:
        tenant = request.user.tenant
    if tenant is None or not tenant.stripe_customer_id:
        raise NotFound('No billing account found for this clinic')
    return Response({'url': stripe_billing.create_portal_session(tenant)})


@api_view(['POST'])
@permission_classes([AllowAny])
def setup_status(request):
    s = SetupStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return Response(stripe_billing.setup_status(s.validated_data['session_id']))
