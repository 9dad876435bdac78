"""
Database models for the ClinicHub backend.

Every clinic-owned row hangs off a :class:`Tenant`.  A tenant is one
subscribing clinic addressed by its subdomain; its subscription state
is mirrored from Stripe and gates access to the rest of the API.  The
remaining models cover patients, appointments and the daily queue,
billing and payments, panel (third-party payer) claims with their
reconciliation and medication inventory.
"""
from __future__ import annotations

from decimal import Decimal

from django.contrib.auth.models import AbstractUser
from django.db import models


class Tenant(models.Model):
    """A subscribing clinic.

    ``subscription_status`` follows the values written by the Stripe
    webhook: ``active``, ``trialing``, ``past_due``, ``canceled``,
    ``comped`` and ``inactive``.  ``grace_period_ends_at`` is only set
    while the tenant is ``past_due``.
    """
    STATUS_ACTIVE = 'active'
    STATUS_TRIALING = 'trialing'
    STATUS_PAST_DUE = 'past_due'
    STATUS_CANCELED = 'canceled'
    STATUS_COMPED = 'comped'
    STATUS_INACTIVE = 'inactive'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_TRIALING, 'Trialing'),
        (STATUS_PAST_DUE, 'Past due'),
        (STATUS_CANCELED, 'Canceled'),
        (STATUS_COMPED, 'Comped'),
        (STATUS_INACTIVE, 'Inactive'),
    ]

    subdomain = models.CharField(max_length=63, unique=True)
    clinic_name = models.CharField(max_length=255)
    plan_code = models.CharField(max_length=50, blank=True)
    subscription_status = models.CharField(
        max_length=20, choices=STATUS_CHOICES, default=STATUS_INACTIVE, db_index=True
    )
    stripe_customer_id = models.CharField(max_length=64, blank=True, null=True, db_index=True)
    stripe_subscription_id = models.CharField(max_length=64, blank=True, null=True, db_index=True)
    is_comped = models.BooleanField(default=False)
    comp_reason = models.CharField(max_length=255, blank=True, null=True)
    current_period_start = models.DateTimeField(null=True, blank=True)
    current_period_end = models.DateTimeField(null=True, blank=True)
    grace_period_ends_at = models.DateTimeField(null=True, blank=True)
    currency = models.CharField(max_length=3, default='MYR')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.clinic_name} ({self.subdomain})"


class User(AbstractUser):
    """Clinic staff account bound to a tenant.

    ``super_admin`` is the platform operator and is not bound to any
    tenant; every other role belongs to exactly one clinic.
    """
    ROLE_CHOICES = [
        ('super_admin', 'Super Administrator'),
        ('admin', 'Clinic Administrator'),
        ('doctor', 'Doctor'),
        ('staff', 'Staff'),
    ]
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default='staff')
    tenant = models.ForeignKey(
        Tenant, null=True, blank=True, on_delete=models.SET_NULL, related_name='users', db_index=True
    )

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class WebhookEvent(models.Model):
    """A Stripe event that has already been applied (idempotency ledger)."""
    id = models.CharField(max_length=255, primary_key=True)
    type = models.CharField(max_length=100)
    processed_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.type}:{self.id}"


class Panel(models.Model):
    """A third-party payer (insurer or corporate panel)."""
    STATUS_CHOICES = [('active', 'Active'), ('inactive', 'Inactive')]
    VERIFICATION_CHOICES = [('url', 'URL'), ('manual', 'Manual')]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='panels')
    panel_name = models.CharField(max_length=255)
    panel_code = models.CharField(max_length=50)
    person_in_charge_name = models.CharField(max_length=255, blank=True)
    person_in_charge_phone = models.CharField(max_length=32, blank=True)
    default_status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='active')
    verification_method = models.CharField(max_length=10, choices=VERIFICATION_CHOICES, default='manual')
    verification_url = models.URLField(blank=True)
    manual_remarks = models.TextField(blank=True)
    created_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = [('tenant', 'panel_code')]

    def __str__(self) -> str:
        return f"{self.panel_name} ({self.panel_code})"


class Patient(models.Model):
    """A patient record.  ``patient_id`` is the public 10-13 digit number."""
    GENDER_CHOICES = [('male', 'Male'), ('female', 'Female'), ('other', 'Other')]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='patients')
    patient_id = models.CharField(max_length=13, unique=True)
    first_name = models.CharField(max_length=128)
    last_name = models.CharField(max_length=128, blank=True)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=10, choices=GENDER_CHOICES, blank=True)
    phone = models.CharField(max_length=32, blank=True)
    email = models.EmailField(blank=True)
    allergies = models.TextField(blank=True)
    medical_history = models.TextField(blank=True)
    visit_reason = models.CharField(max_length=255, blank=True)
    panel = models.ForeignKey(Panel, null=True, blank=True, on_delete=models.SET_NULL, related_name='patients')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=['tenant', 'last_name', 'first_name'])]

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __str__(self) -> str:
        return f"{self.full_name} ({self.patient_id})"


class QueueEntry(models.Model):
    STATUS_WAITING = 'waiting'
    STATUS_URGENT = 'urgent'
    STATUS_IN_CONSULTATION = 'in_consultation'
    STATUS_DISPENSARY = 'dispensary'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = [
        (STATUS_WAITING, 'Waiting'),
        (STATUS_URGENT, 'Urgent'),
        (STATUS_IN_CONSULTATION, 'In consultation'),
        (STATUS_DISPENSARY, 'Dispensary'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='queue_entries')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='queue_entries')
    queue_number = models.CharField(max_length=10)
    queue_date = models.DateField(db_index=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_WAITING, db_index=True)
    assigned_doctor = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='queue_entries'
    )
    estimated_consultation_duration = models.PositiveIntegerField(default=30, help_text="minutes")
    checked_in_at = models.DateTimeField(auto_now_add=True)
    consultation_started_at = models.DateTimeField(null=True, blank=True)
    consultation_completed_at = models.DateTimeField(null=True, blank=True)
    payment_method = models.CharField(max_length=50, blank=True)
    payment_method_notes = models.CharField(max_length=255, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = [('tenant', 'queue_date', 'queue_number')]
        indexes = [models.Index(fields=['tenant', 'queue_date', 'status'])]

    def __str__(self) -> str:
        return f"{self.queue_number} ({self.status})"


class QueueEntryTransition(models.Model):
    """Records a status transition for a queue entry."""
    entry = models.ForeignKey(QueueEntry, related_name='transitions', on_delete=models.CASCADE)
    from_status = models.CharField(max_length=20, null=True, blank=True)
    to_status = models.CharField(max_length=20)
    operator = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='queue_transitions')
    timestamp = models.DateTimeField(auto_now_add=True)
    reason = models.CharField(max_length=255, blank=True)

    def __str__(self) -> str:
        return f"{self.entry_id}: {self.from_status} → {self.to_status}"


class QueueSession(models.Model):
    """Working consultation data captured while a patient is in the queue."""
    STATUS_CHOICES = [('active', 'Active'), ('archived', 'Archived')]

    entry = models.OneToOneField(QueueEntry, on_delete=models.CASCADE, related_name='session')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='queue_sessions')
    session_data = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='active', db_index=True)
    archived_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"session for {self.entry_id} ({self.status})"


class Appointment(models.Model):
    """A booked consultation slot with one doctor.

    ``end_at`` is ``start_at`` plus ``duration_minutes`` and is kept in
    step by the appointment service.  Occurrences created from one
    recurring booking share a ``recurrence_id``.
    """
    STATUS_SCHEDULED = 'scheduled'
    STATUS_CONFIRMED = 'confirmed'
    STATUS_IN_CONSULTATION = 'in_consultation'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_NO_SHOW = 'no_show'
    STATUS_CHOICES = [
        (STATUS_SCHEDULED, 'Scheduled'),
        (STATUS_CONFIRMED, 'Confirmed'),
        (STATUS_IN_CONSULTATION, 'In consultation'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_NO_SHOW, 'No show'),
    ]
    # statuses that hold the doctor's time
    ACTIVE_STATUSES = (STATUS_SCHEDULED, STATUS_CONFIRMED, STATUS_IN_CONSULTATION)

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='appointments')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='appointments')
    doctor = models.ForeignKey(User, on_delete=models.PROTECT, related_name='appointments')
    start_at = models.DateTimeField(db_index=True)
    end_at = models.DateTimeField()
    duration_minutes = models.PositiveIntegerField(default=15)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_SCHEDULED, db_index=True)
    reason = models.CharField(max_length=255, blank=True)
    notes = models.TextField(blank=True)
    cancellation_reason = models.CharField(max_length=255, blank=True)
    recurrence_id = models.UUIDField(null=True, blank=True, db_index=True)
    reminder_sent_at = models.DateTimeField(null=True, blank=True)
    reminder_method = models.CharField(max_length=10, blank=True)
    created_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=['tenant', 'doctor', 'start_at'])]

    def __str__(self) -> str:
        return f"{self.patient_id} with {self.doctor_id} at {self.start_at:%Y-%m-%d %H:%M} ({self.status})"


class AppointmentWaitlist(models.Model):
    """A patient waiting for a slot to open up."""
    PRIORITY_CHOICES = [('high', 'High'), ('normal', 'Normal'), ('low', 'Low')]
    STATUS_CHOICES = [('active', 'Active'), ('fulfilled', 'Fulfilled'), ('cancelled', 'Cancelled')]
    CONTACT_CHOICES = [('phone', 'Phone'), ('sms', 'SMS'), ('email', 'Email')]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='appointment_waitlist')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='waitlist_entries')
    doctor = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    preferred_date_start = models.DateField(null=True, blank=True)
    preferred_date_end = models.DateField(null=True, blank=True)
    preferred_time_start = models.TimeField(null=True, blank=True)
    preferred_time_end = models.TimeField(null=True, blank=True)
    duration_minutes = models.PositiveIntegerField(default=15)
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default='normal')
    contact_preference = models.CharField(max_length=10, choices=CONTACT_CHOICES, default='phone')
    notes = models.TextField(blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='active', db_index=True)
    appointment = models.ForeignKey(
        Appointment, null=True, blank=True, on_delete=models.SET_NULL, related_name='waitlist_entries'
    )
    created_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"waitlist {self.patient_id} ({self.priority}, {self.status})"


class BillingRecord(models.Model):
    """An invoice line.  ``panel`` set means a panel pays, else the patient."""
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('unpaid', 'Unpaid'),
        ('partial', 'Partial'),
        ('paid', 'Paid'),
    ]
    OUTSTANDING_STATUSES = ('pending', 'unpaid', 'partial')

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='billing_records')
    invoice_number = models.CharField(max_length=50)
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='billing_records')
    queue_entry = models.ForeignKey(
        QueueEntry, null=True, blank=True, on_delete=models.SET_NULL, related_name='billing_records'
    )
    description = models.CharField(max_length=255, blank=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    due_date = models.DateField(null=True, blank=True)
    paid_date = models.DateTimeField(null=True, blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='pending', db_index=True)
    payment_method = models.CharField(max_length=50, blank=True)
    panel = models.ForeignKey(Panel, null=True, blank=True, on_delete=models.SET_NULL, related_name='billing_records')
    claim_status = models.CharField(max_length=20, blank=True, default='pending')
    claim_number = models.CharField(max_length=50, blank=True)
    claim_notes = models.TextField(blank=True)
    created_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = [('tenant', 'invoice_number')]

    def __str__(self) -> str:
        return f"{self.invoice_number} {self.amount} ({self.status})"


class PaymentRecord(models.Model):
    billing = models.ForeignKey(BillingRecord, on_delete=models.CASCADE, related_name='payments')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='payments')
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(max_length=50)
    reference_number = models.CharField(max_length=100, blank=True)
    payment_date = models.DateTimeField()
    notes = models.TextField(blank=True)
    processed_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    status = models.CharField(max_length=20, default='confirmed')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"payment {self.amount} for {self.billing_id}"


class PanelClaim(models.Model):
    """A batch of billing records claimed from one panel."""
    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('submitted', 'Submitted'),
        ('approved', 'Approved'),
        ('short_paid', 'Short Paid'),
        ('rejected', 'Rejected'),
        ('paid', 'Paid'),
    ]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='panel_claims')
    claim_number = models.CharField(max_length=32)
    panel = models.ForeignKey(Panel, on_delete=models.PROTECT, related_name='claims')
    billing_period_start = models.DateField()
    billing_period_end = models.DateField()
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    total_items = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft', db_index=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    submitted_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    approved_at = models.DateTimeField(null=True, blank=True)
    approved_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    paid_at = models.DateTimeField(null=True, blank=True)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    rejection_reason = models.TextField(blank=True)
    panel_reference_number = models.CharField(max_length=100, blank=True)
    notes = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = [('tenant', 'claim_number')]
        indexes = [models.Index(fields=['tenant', 'status', 'updated_at'])]

    def __str__(self) -> str:
        return f"{self.claim_number} ({self.status})"


class PanelClaimItem(models.Model):
    STATUS_CHOICES = [('included', 'Included'), ('excluded', 'Excluded'), ('rejected', 'Rejected')]

    claim = models.ForeignKey(PanelClaim, on_delete=models.CASCADE, related_name='items')
    billing = models.ForeignKey(BillingRecord, on_delete=models.CASCADE, related_name='claim_items')
    item_amount = models.DecimalField(max_digits=12, decimal_places=2)
    claim_amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='included')
    rejection_reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"item {self.billing_id} in {self.claim_id}"


class ClaimStatusRule(models.Model):
    """Moves claims from one status to another after ``delay_hours`` idle."""
    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='claim_status_rules')
    rule_name = models.CharField(max_length=255)
    from_status = models.CharField(max_length=20, choices=PanelClaim.STATUS_CHOICES)
    to_status = models.CharField(max_length=20, choices=PanelClaim.STATUS_CHOICES)
    trigger_type = models.CharField(max_length=20, default='time_based')
    delay_hours = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    auto_execute = models.BooleanField(default=True)
    notification_enabled = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.rule_name}: {self.from_status} → {self.to_status}"


class ClaimSchedule(models.Model):
    """Periodic automatic claim generation for one panel."""
    FREQUENCY_CHOICES = [('weekly', 'Weekly'), ('monthly', 'Monthly'), ('quarterly', 'Quarterly')]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='claim_schedules')
    schedule_name = models.CharField(max_length=255)
    panel = models.ForeignKey(Panel, on_delete=models.CASCADE, related_name='claim_schedules')
    frequency = models.CharField(max_length=10, choices=FREQUENCY_CHOICES, default='monthly')
    day_of_period = models.PositiveSmallIntegerField(null=True, blank=True)
    billing_period_days = models.PositiveIntegerField(default=30)
    auto_submit = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)
    next_generation_at = models.DateTimeField()
    last_generated_at = models.DateTimeField(null=True, blank=True)

    def __str__(self) -> str:
        return f"{self.schedule_name} ({self.frequency})"


class ClaimNotification(models.Model):
    STATUS_CHOICES = [('pending', 'Pending'), ('sent', 'Sent'), ('failed', 'Failed')]

    claim = models.ForeignKey(PanelClaim, on_delete=models.CASCADE, related_name='notifications')
    notification_type = models.CharField(max_length=30)
    recipient_type = models.CharField(max_length=20, default='staff')
    subject = models.CharField(max_length=255)
    message = models.TextField()
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='pending', db_index=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    failed_reason = models.TextField(blank=True)
    retry_count = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.notification_type}: {self.subject}"


class ClaimReconciliation(models.Model):
    """A payment received from a panel checked against what was claimed."""
    STATUS_CHOICES = [
        ('matched', 'Matched'),
        ('pending', 'Pending review'),
        ('resolved', 'Resolved'),
        ('disputed', 'Disputed'),
    ]
    VARIANCE_CHOICES = [
        ('none', 'None'),
        ('underpayment', 'Underpayment'),
        ('overpayment', 'Overpayment'),
    ]

    claim = models.ForeignKey(PanelClaim, on_delete=models.CASCADE, related_name='reconciliations')
    reconciliation_date = models.DateField()
    claim_amount = models.DecimalField(max_digits=12, decimal_places=2)
    received_amount = models.DecimalField(max_digits=12, decimal_places=2)
    variance_amount = models.DecimalField(max_digits=12, decimal_places=2)
    variance_percentage = models.DecimalField(max_digits=7, decimal_places=2)
    variance_type = models.CharField(max_length=20, choices=VARIANCE_CHOICES)
    reconciliation_status = models.CharField(max_length=10, choices=STATUS_CHOICES, db_index=True)
    payment_reference = models.CharField(max_length=100, blank=True)
    payment_date = models.DateField(null=True, blank=True)
    payment_method = models.CharField(max_length=50, blank=True)
    notes = models.TextField(blank=True)
    reconciled_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    reconciled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.claim_id}: {self.variance_type} {self.variance_amount} ({self.reconciliation_status})"


class ClaimApprovalWorkflow(models.Model):
    """When a payment variance needs sign-off, and by whom.

    A workflow applies when the absolute variance reaches any threshold
    that is set (non-zero); with neither set it applies to every
    variance.  ``panel`` empty means every panel of the clinic.
    """
    ROLE_CHOICES = [('admin', 'Clinic Administrator'), ('doctor', 'Doctor'), ('staff', 'Staff')]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='claim_approval_workflows')
    workflow_name = models.CharField(max_length=255)
    panel = models.ForeignKey(Panel, null=True, blank=True, on_delete=models.CASCADE, related_name='+')
    variance_threshold_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    variance_threshold_percentage = models.DecimalField(max_digits=7, decimal_places=2, default=Decimal('0'))
    required_approver_role = models.CharField(max_length=20, choices=ROLE_CHOICES, default='admin')
    auto_escalate_days = models.PositiveIntegerField(default=3)
    escalation_role = models.CharField(max_length=20, choices=ROLE_CHOICES, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return self.workflow_name


class ClaimApprovalRequest(models.Model):
    """Sign-off requested for a reconciliation variance."""
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('escalated', 'Escalated'),
        ('approved', 'Approved'),
        ('rejected', 'Rejected'),
        ('expired', 'Expired'),
    ]
    OPEN_STATUSES = ('pending', 'escalated')

    claim = models.ForeignKey(PanelClaim, on_delete=models.CASCADE, related_name='approval_requests')
    reconciliation = models.ForeignKey(
        ClaimReconciliation, null=True, blank=True, on_delete=models.CASCADE, related_name='approval_requests'
    )
    workflow = models.ForeignKey(
        ClaimApprovalWorkflow, null=True, blank=True, on_delete=models.SET_NULL, related_name='requests'
    )
    required_role = models.CharField(max_length=20)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='pending', db_index=True)
    requested_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    expires_at = models.DateTimeField(db_index=True)
    escalated_at = models.DateTimeField(null=True, blank=True)
    decided_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    decided_at = models.DateTimeField(null=True, blank=True)
    decision_notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"approval for {self.claim_id} ({self.status})"


class Medication(models.Model):
    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='medications')
    name = models.CharField(max_length=255)
    unit = models.CharField(max_length=32, blank=True)
    stock_level = models.IntegerField(default=0)
    reorder_level = models.IntegerField(default=10)
    cost_price = models.DecimalField(max_digits=12, decimal_places=4, default=Decimal('0'))
    average_cost = models.DecimalField(max_digits=12, decimal_places=4, default=Decimal('0'))
    selling_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.name} ({self.stock_level})"


class StockMovement(models.Model):
    TYPE_RECEIPT = 'receipt'
    TYPE_CHOICES = [
        ('receipt', 'Receipt'),
        ('dispensed', 'Dispensed'),
        ('adjustment', 'Adjustment'),
        ('expired', 'Expired'),
        ('damaged', 'Damaged'),
    ]
    OUTGOING_TYPES = ('dispensed', 'expired', 'damaged')

    medication = models.ForeignKey(Medication, on_delete=models.CASCADE, related_name='movements')
    movement_type = models.CharField(max_length=20, choices=TYPE_CHOICES, db_index=True)
    quantity = models.IntegerField()
    previous_stock = models.IntegerField(default=0)
    new_stock = models.IntegerField(default=0)
    unit_cost = models.DecimalField(max_digits=12, decimal_places=4, default=Decimal('0'))
    total_cost = models.DecimalField(max_digits=14, decimal_places=4, default=Decimal('0'))
    cost_per_unit_before = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)
    cost_per_unit_after = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)
    reason = models.CharField(max_length=255, blank=True)
    reference_number = models.CharField(max_length=100, blank=True)
    supplier_name = models.CharField(max_length=255, blank=True)
    batch_number = models.CharField(max_length=100, blank=True)
    expiry_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True)
    created_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        indexes = [models.Index(fields=['medication', 'movement_type', 'created_at'])]

    def __str__(self) -> str:
        return f"{self.movement_type} {self.quantity} of {self.medication_id}"


class AuditEvent(models.Model):
    tenant = models.ForeignKey(Tenant, on_delete=models.SET_NULL, null=True, blank=True)
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.CharField(max_length=64, blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at']),
            models.Index(fields=['object_type', 'object_id', 'created_at']),
        ]

    def __str__(self):
        return f"{self.action}:{self.user_id}@{self.created_at:%F %T}"
