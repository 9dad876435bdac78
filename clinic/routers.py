"""
URL mappings for the ClinicHub API.

Every endpoint is a function view registered here.  Trailing slashes
are omitted, matching the front end's endpoint table (``APPEND_SLASH``
is off).
"""
from django.urls import path, include

from .auth_views import login_view, jwt_refresh_view, jwt_logout_view
from .views import (
    appointments,
    billing,
    claims,
    consultations,
    health,
    inventory,
    panels,
    patients,
    queue,
    reconciliation,
)
from .views.subscription import (
    billing_access,
    check_subdomain_view,
    create_checkout_session,
    create_portal_session,
    setup_status,
)
from .views.webhooks import stripe_webhook


urlpatterns = [
    path('metrics', include('django_prometheus.urls')),
    path('healthz', health.healthz),
    # Authentication
    path('api/auth/login', login_view),
    path('api/auth/refresh', jwt_refresh_view),
    path('api/auth/logout', jwt_logout_view),
    # Signup and subscription
    path('api/tenants/check-subdomain', check_subdomain_view),
    path('api/billing/access', billing_access),
    path('api/stripe/create-checkout-session', create_checkout_session),
    path('api/stripe/create-portal-session', create_portal_session),
    path('api/stripe/setup-status', setup_status),
    path('api/stripe/webhook', stripe_webhook),
    # Patients and panels
    path('api/patients', patients.patients),
    path('api/patients/<int:pk>', patients.patient_detail),
    path('api/patients/by-patient-id/<str:patient_id>', patients.patient_lookup),
    path('api/panels', panels.panels),
    path('api/panels/<int:pk>', panels.panel_detail),
    # Appointments
    path('api/appointments', appointments.appointments),
    path('api/appointments/waitlist', appointments.waitlist),
    path('api/appointments/waitlist/<int:pk>/status', appointments.waitlist_update_status),
    path('api/appointments/<int:pk>', appointments.appointment_detail),
    path('api/appointments/<int:pk>/reschedule', appointments.appointment_reschedule),
    path('api/appointments/<int:pk>/cancel', appointments.appointment_cancel),
    path('api/appointments/<int:pk>/status', appointments.appointment_update_status),
    path('api/appointments/<int:pk>/recurrence', appointments.appointment_recurrence),
    path('api/appointments/<int:pk>/remind', appointments.appointment_remind),
    # Queue
    path('api/queue', queue.queue_today),
    path('api/queue/add', queue.queue_add),
    path('api/queue/call-next', queue.queue_call_next),
    path('api/queue/stats', queue.queue_stats),
    path('api/queue/wait-time', queue.queue_wait_time),
    path('api/queue/<int:pk>', queue.queue_entry_detail),
    path('api/queue/<int:pk>/status', queue.queue_update_status),
    path('api/queue/<int:pk>/session', queue.queue_session),
    # Billing
    path('api/billing/records', billing.billing_records),
    path('api/billing/records/batch-status', billing.billing_batch_update_status),
    path('api/billing/records/<int:pk>', billing.billing_record_detail),
    path('api/billing/records/<int:pk>/status', billing.billing_update_status),
    path('api/billing/records/<int:pk>/payments', billing.billing_payments),
    path('api/billing/records/<int:pk>/summary', billing.billing_payment_summary),
    # Panel claims
    path('api/claims', claims.claims),
    path('api/claims/transitions', claims.claim_transitions),
    path('api/claims/<int:pk>', claims.claim_detail),
    path('api/claims/<int:pk>/status', claims.claim_update_status),
    path('api/claims/<int:pk>/reconciliations', reconciliation.claim_reconciliations),
    path('api/claims/reconciliations', reconciliation.reconciliations),
    path('api/claims/reconciliations/stats', reconciliation.reconciliation_stats),
    path('api/claims/reconciliations/<int:pk>/status', reconciliation.reconciliation_update_status),
    path('api/claims/approval-workflows', reconciliation.approval_workflows),
    path('api/claims/approvals', reconciliation.approval_requests),
    path('api/claims/approvals/<int:pk>/decision', reconciliation.approval_decide),
    # Inventory
    path('api/inventory/medications', inventory.medications),
    path('api/inventory/medications/<int:pk>', inventory.medication_detail),
    path('api/inventory/medications/<int:pk>/movements', inventory.medication_movements),
    path('api/inventory/medications/<int:pk>/set-stock', inventory.medication_set_stock),
    path('api/inventory/medications/<int:pk>/recalculate', inventory.medication_recalculate),
    path('api/inventory/summary', inventory.stock_summary),
    path('api/inventory/movements', inventory.stock_movements),
    path('api/inventory/movements/<int:pk>/cost', inventory.movement_update_cost),
    # Consultations
    path('api/consultations/enhance-notes', consultations.enhance_consultation_notes),
]
