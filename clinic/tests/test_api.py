"""
End-to-end API tests for a clinic day.

A patient is registered, checked into the queue, seen by the doctor,
billed to their panel and claimed from the payer.  The tests use Django
REST Framework's APIClient within the APITestCase base class.
"""
from decimal import Decimal

from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from clinic.models import BillingRecord, Panel, PanelClaim, Tenant, User


class ClinicFlowAPITests(APITestCase):
    def setUp(self) -> None:
        self.tenant = Tenant.objects.create(subdomain='klinik-sihat', clinic_name='Klinik Sihat',
                                            subscription_status='active', stripe_customer_id='cus_flow')
        self.other_tenant = Tenant.objects.create(subdomain='klinik-lain', clinic_name='Klinik Lain',
                                                  subscription_status='active')
        self.admin = User.objects.create_user(username='flow-admin', password='P@ssw0rd1', role='admin',
                                              tenant=self.tenant)
        self.doctor = User.objects.create_user(username='flow-doctor', password='P@ssw0rd1', role='doctor',
                                               tenant=self.tenant)
        self.staff = User.objects.create_user(username='flow-staff', password='P@ssw0rd1', role='staff',
                                              tenant=self.tenant)
        self.outsider = User.objects.create_user(username='flow-outsider', password='P@ssw0rd1', role='admin',
                                                 tenant=self.other_tenant)
        self.panel = Panel.objects.create(tenant=self.tenant, panel_name='Prudential', panel_code='PRU')

    def _client(self, username: str) -> APIClient:
        client = APIClient()
        r = client.post('/api/auth/login', {'username': username, 'password': 'P@ssw0rd1'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {r.data['jwt_access']}")
        return client

    def test_patient_visit_to_paid_claim(self):
        staff = self._client('flow-staff')
        doctor = self._client('flow-doctor')
        admin = self._client('flow-admin')

        r = staff.post('/api/patients', {'first_name': 'Nur', 'last_name': 'Hidayah', 'panel_id': self.panel.id},
                       format='json')
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        patient_pk = r.data['id']
        self.assertEqual(len(r.data['patient_id']), 13)

        r = staff.post('/api/queue/add', {'patient_id': patient_pk}, format='json')
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        self.assertEqual(r.data['queue_number'], 'A001')
        entry_id = r.data['id']

        r = doctor.post('/api/queue/call-next')
        self.assertEqual(r.data['entry']['id'], entry_id)
        r = doctor.post(f'/api/queue/{entry_id}/status', {'status': 'completed'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(r.data['entry']['status'], 'completed')

        bills = [
            BillingRecord.objects.create(tenant=self.tenant, patient_id=patient_pk, panel=self.panel,
                                         invoice_number=f'INV-FLOW-{n}', amount=Decimal(amount))
            for n, amount in enumerate(('75.00', '25.00'), start=1)
        ]
        r = admin.get('/api/billing/records', {'payer': 'panel'})
        self.assertEqual({b['id'] for b in r.data}, {b.id for b in bills})

        today = timezone.localdate().isoformat()
        r = admin.post('/api/claims', {
            'panel_id': self.panel.id,
            'billing_period_start': today,
            'billing_period_end': today,
            'billing_ids': [b.id for b in bills],
        }, format='json')
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        claim_id = r.data['id']
        self.assertEqual(Decimal(r.data['total_amount']), Decimal('100.00'))

        for target in ('submitted', 'approved'):
            r = admin.post(f'/api/claims/{claim_id}/status', {'status': target}, format='json')
            self.assertEqual(r.status_code, status.HTTP_200_OK)
        r = admin.post(f'/api/claims/{claim_id}/status', {'status': 'paid', 'paid_amount': '90.00'}, format='json')
        self.assertEqual(r.data['status'], 'short_paid')

        r = admin.post(f'/api/claims/{claim_id}/status', {'status': 'paid'}, format='json')
        self.assertEqual(r.data['status'], 'paid')
        self.assertEqual(Decimal(r.data['paid_amount']), Decimal('100.00'))
        self.assertEqual(set(BillingRecord.objects.filter(tenant=self.tenant).values_list('claim_status', flat=True)),
                         {'paid'})

        r = admin.delete(f'/api/claims/{claim_id}')
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertTrue(PanelClaim.objects.filter(pk=claim_id).exists())

    def test_clinics_do_not_see_each_other(self):
        admin = self._client('flow-admin')
        outsider = self._client('flow-outsider')
        r = admin.post('/api/patients', {'first_name': 'Rahim'}, format='json')
        patient_pk = r.data['id']

        self.assertEqual(outsider.get(f'/api/patients/{patient_pk}').status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(outsider.get('/api/patients').data['total'], 0)
        r = outsider.post('/api/queue/add', {'patient_id': patient_pk}, format='json')
        self.assertEqual(r.status_code, status.HTTP_404_NOT_FOUND)

    def test_lapsed_subscription_blocks_clinic_data(self):
        self.tenant.subscription_status = 'canceled'
        self.tenant.save()
        staff = self._client('flow-staff')

        r = staff.get('/api/patients')
        self.assertEqual(r.status_code, status.HTTP_402_PAYMENT_REQUIRED)
        self.assertEqual(r.data['error']['code'], 'subscription_inactive')
        r = staff.get('/api/billing/access')
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertFalse(r.data['hasAccess'])
