"""
Django admin registrations for the clinic models.

Superusers can inspect tenants, subscription state and the clinical
records at ``/admin/``.  Configuration is kept minimal.
"""

from django.contrib import admin

from .models import (
    Appointment,
    AppointmentWaitlist,
    AuditEvent,
    BillingRecord,
    ClaimApprovalRequest,
    ClaimApprovalWorkflow,
    ClaimNotification,
    ClaimReconciliation,
    ClaimSchedule,
    ClaimStatusRule,
    Medication,
    Panel,
    PanelClaim,
    PanelClaimItem,
    Patient,
    PaymentRecord,
    QueueEntry,
    QueueEntryTransition,
    QueueSession,
    StockMovement,
    Tenant,
    User,
    WebhookEvent,
)


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ('id', 'subdomain', 'clinic_name', 'subscription_status', 'is_comped', 'current_period_end')
    list_filter = ('subscription_status', 'is_comped')
    search_fields = ('subdomain', 'clinic_name', 'stripe_customer_id')


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'email', 'role', 'tenant', 'is_staff', 'is_superuser')
    list_filter = ('role', 'tenant')
    search_fields = ('username', 'email', 'first_name', 'last_name')


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ('id', 'type', 'processed_at')
    search_fields = ('id', 'type')


@admin.register(Panel)
class PanelAdmin(admin.ModelAdmin):
    list_display = ('id', 'panel_code', 'panel_name', 'tenant', 'default_status')
    list_filter = ('default_status', 'tenant')
    search_fields = ('panel_code', 'panel_name')


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ('patient_id', 'first_name', 'last_name', 'tenant', 'panel', 'created_at')
    list_filter = ('tenant',)
    search_fields = ('patient_id', 'first_name', 'last_name', 'phone')


@admin.register(QueueEntry)
class QueueEntryAdmin(admin.ModelAdmin):
    list_display = ('id', 'queue_number', 'queue_date', 'patient', 'status', 'assigned_doctor')
    list_filter = ('status', 'queue_date', 'tenant')
    search_fields = ('queue_number', 'patient__patient_id')


@admin.register(QueueEntryTransition)
class QueueEntryTransitionAdmin(admin.ModelAdmin):
    list_display = ('entry', 'from_status', 'to_status', 'operator', 'timestamp')
    list_filter = ('to_status',)
    search_fields = ('entry__queue_number', 'operator__username')


@admin.register(QueueSession)
class QueueSessionAdmin(admin.ModelAdmin):
    list_display = ('entry', 'patient', 'status', 'archived_at', 'updated_at')
    list_filter = ('status',)


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'doctor', 'start_at', 'duration_minutes', 'status', 'reminder_sent_at')
    list_filter = ('status', 'tenant')
    search_fields = ('patient__patient_id', 'patient__first_name', 'doctor__username')


@admin.register(AppointmentWaitlist)
class AppointmentWaitlistAdmin(admin.ModelAdmin):
    list_display = ('patient', 'doctor', 'priority', 'status', 'created_at')
    list_filter = ('priority', 'status')


@admin.register(BillingRecord)
class BillingRecordAdmin(admin.ModelAdmin):
    list_display = ('invoice_number', 'patient', 'amount', 'status', 'panel', 'claim_status', 'claim_number')
    list_filter = ('status', 'claim_status', 'tenant')
    search_fields = ('invoice_number', 'claim_number', 'patient__patient_id')


@admin.register(PaymentRecord)
class PaymentRecordAdmin(admin.ModelAdmin):
    list_display = ('billing', 'amount', 'payment_method', 'payment_date', 'processed_by')
    search_fields = ('billing__invoice_number', 'reference_number')


class PanelClaimItemInline(admin.TabularInline):
    model = PanelClaimItem
    extra = 0


@admin.register(PanelClaim)
class PanelClaimAdmin(admin.ModelAdmin):
    list_display = ('claim_number', 'panel', 'status', 'total_amount', 'paid_amount', 'created_at')
    list_filter = ('status', 'tenant')
    search_fields = ('claim_number', 'panel_reference_number')
    inlines = [PanelClaimItemInline]


@admin.register(ClaimStatusRule)
class ClaimStatusRuleAdmin(admin.ModelAdmin):
    list_display = ('rule_name', 'tenant', 'from_status', 'to_status', 'delay_hours', 'is_active')
    list_filter = ('is_active',)


@admin.register(ClaimSchedule)
class ClaimScheduleAdmin(admin.ModelAdmin):
    list_display = ('schedule_name', 'panel', 'frequency', 'next_generation_at', 'is_active')
    list_filter = ('frequency', 'is_active')


@admin.register(ClaimNotification)
class ClaimNotificationAdmin(admin.ModelAdmin):
    list_display = ('claim', 'notification_type', 'status', 'retry_count', 'created_at')
    list_filter = ('status', 'notification_type')


@admin.register(ClaimReconciliation)
class ClaimReconciliationAdmin(admin.ModelAdmin):
    list_display = ('claim', 'claim_amount', 'received_amount', 'variance_amount', 'variance_type',
                    'reconciliation_status')
    list_filter = ('reconciliation_status', 'variance_type')
    search_fields = ('claim__claim_number', 'payment_reference')


@admin.register(ClaimApprovalWorkflow)
class ClaimApprovalWorkflowAdmin(admin.ModelAdmin):
    list_display = ('workflow_name', 'tenant', 'required_approver_role', 'escalation_role', 'is_active')
    list_filter = ('is_active',)


@admin.register(ClaimApprovalRequest)
class ClaimApprovalRequestAdmin(admin.ModelAdmin):
    list_display = ('claim', 'required_role', 'status', 'expires_at', 'decided_by')
    list_filter = ('status',)


@admin.register(Medication)
class MedicationAdmin(admin.ModelAdmin):
    list_display = ('name', 'tenant', 'stock_level', 'reorder_level', 'average_cost')
    list_filter = ('tenant',)
    search_fields = ('name',)


@admin.register(StockMovement)
class StockMovementAdmin(admin.ModelAdmin):
    list_display = ('medication', 'movement_type', 'quantity', 'unit_cost', 'new_stock', 'created_at')
    list_filter = ('movement_type',)
    search_fields = ('medication__name', 'reference_number', 'batch_number')


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('action', 'object_type', 'object_id', 'user', 'tenant', 'created_at')
    list_filter = ('action',)
