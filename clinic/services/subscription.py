"""Subscription access guard.

Decides whether a user's clinic may use the application, based on the
subscription status mirrored from Stripe and the past-due grace period.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from django.conf import settings
from django.utils import timezone

from clinic.models import Tenant

ALLOWED_STATUSES = (Tenant.STATUS_ACTIVE, Tenant.STATUS_TRIALING)


@dataclass
class AccessDecision:
    has_access: bool
    is_in_grace_period: bool = False
    is_super_admin: bool = False
    tenant: Optional[Tenant] = None

    def as_dict(self) -> dict:
        tenant = self.tenant
        return {
            'hasAccess': self.has_access,
            'isInGracePeriod': self.is_in_grace_period,
            'isSuperAdmin': self.is_super_admin,
            'tenant': None if tenant is None else {
                'id': tenant.id,
                'subdomain': tenant.subdomain,
                'clinicName': tenant.clinic_name,
                'subscriptionStatus': tenant.subscription_status,
                'gracePeriodEndsAt': tenant.grace_period_ends_at.isoformat() if tenant.grace_period_ends_at else None,
                'isComped': tenant.is_comped,
            },
        }


def in_grace_period(tenant: Tenant, now: Optional[datetime] = None) -> bool:
    now = now or timezone.now()
    return bool(
        tenant.subscription_status == Tenant.STATUS_PAST_DUE
        and tenant.grace_period_ends_at
        and tenant.grace_period_ends_at > now
    )


def tenant_has_access(tenant: Tenant, now: Optional[datetime] = None) -> bool:
    if tenant.subscription_status in ALLOWED_STATUSES:
        return True
    if tenant.is_comped and tenant.subscription_status == Tenant.STATUS_COMPED:
        return True
    return in_grace_period(tenant, now)


def evaluate_access(user, now: Optional[datetime] = None) -> AccessDecision:
    if getattr(user, 'role', None) == 'super_admin':
        return AccessDecision(has_access=True, is_super_admin=True)
    tenant = getattr(user, 'tenant', None)
    if tenant is None:
        return AccessDecision(has_access=False)
    return AccessDecision(
        has_access=tenant_has_access(tenant, now),
        is_in_grace_period=in_grace_period(tenant, now),
        tenant=tenant,
    )


def grace_period_end(now: Optional[datetime] = None) -> datetime:
    return (now or timezone.now()) + timedelta(days=settings.SUBSCRIPTION_GRACE_DAYS)
