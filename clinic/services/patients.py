import logging
import random
import re
import time

from django.db import IntegrityError, transaction
from rest_framework.exceptions import APIException, NotFound, PermissionDenied

from clinic.models import Patient

logger = logging.getLogger(__name__)

PATIENT_ID_RE = re.compile(r'^\d{10,13}$')
MAX_ID_ATTEMPTS = 5


class PatientIdUnavailable(APIException):
    status_code = 500
    default_detail = 'Failed to generate unique patient ID after multiple attempts'
    default_code = 'patient_id_unavailable'


def generate_patient_id() -> str:
    """10 digits of unix time followed by 3 random digits."""
    return f"{int(time.time()) % 10_000_000_000:010d}{random.randint(0, 999):03d}"


def is_valid_patient_id(patient_id: str) -> bool:
    return bool(PATIENT_ID_RE.match(patient_id or ''))


def generate_unique_patient_id() -> str:
    for attempt in range(MAX_ID_ATTEMPTS):
        candidate = generate_patient_id()
        if not Patient.objects.filter(patient_id=candidate).exists():
            return candidate
        logger.warning('patient id collision on attempt %d: %s', attempt + 1, candidate)
    raise PatientIdUnavailable()


def ensure_tenant_or_raise(user):
    if getattr(user, 'role', '') == 'super_admin':
        return getattr(user, 'tenant', None)
    if not getattr(user, 'tenant_id', None):
        raise PermissionDenied('user without clinic cannot manage patients')
    return user.tenant


def create_patient(current_user, **fields) -> Patient:
    tenant = ensure_tenant_or_raise(current_user)
    if tenant is None:
        raise PermissionDenied('select a clinic before creating patients')
    for attempt in range(MAX_ID_ATTEMPTS):
        try:
            with transaction.atomic():
                return Patient.objects.create(tenant=tenant, patient_id=generate_unique_patient_id(), **fields)
        except IntegrityError:
            # lost a race for the same id
            logger.warning('patient id insert conflict on attempt %d', attempt + 1)
    raise PatientIdUnavailable()


def scoped_patients(user):
    qs = Patient.objects.select_related('panel')
    if getattr(user, 'role', '') == 'super_admin':
        return qs
    return qs.filter(tenant_id=user.tenant_id)


def get_patient_or_404(user, pk) -> Patient:
    patient = scoped_patients(user).filter(pk=pk).first()
    if not patient:
        raise NotFound('patient not found')
    return patient


def find_by_patient_id(user, patient_id: str) -> Patient:
    if not is_valid_patient_id(patient_id):
        raise NotFound('patient not found')
    patient = scoped_patients(user).filter(patient_id=patient_id).first()
    if not patient:
        raise NotFound('patient not found')
    return patient
