from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import CLINIC_ACCESS, IsClinicAdmin
from clinic.serializers.billing import (
    BatchBillingStatusSerializer,
    BillingListQuerySerializer,
    BillingRecordSerializer,
    BillingStatusSerializer,
    PaymentCreateSerializer,
    PaymentSerializer,
)
from clinic.services import billing as billing_service
from clinic.services.audit import log_action


@api_view(['GET'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def billing_records(request):
    """Invoices filtered by payer (panel/patient), status and panel."""
    q = BillingListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = billing_service.list_billing(
        request.user,
        payer=q.validated_data['payer'],
        status=q.validated_data['status'],
        panel_id=q.validated_data.get('panel_id'),
    )
    return Response(BillingRecordSerializer(qs[:500], many=True).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def billing_record_detail(request, pk: int):
    record = billing_service.get_billing_or_404(request.user, pk)
    data = BillingRecordSerializer(record).data
    data['payments'] = PaymentSerializer(record.payments.order_by('payment_date'), many=True).data
    data['summary'] = billing_service.payment_summary(record)
    return Response(data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicAdmin, *CLINIC_ACCESS])
def billing_update_status(request, pk: int):
    s = BillingStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    record = billing_service.get_billing_or_404(request.user, pk)
    record = billing_service.update_billing_status(record, s.validated_data['status'], **s.updates())
    log_action(user=request.user, action='billing_status', object_type='billing', object_id=record.id,
               detail={'status': record.status})
    return Response(BillingRecordSerializer(record).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicAdmin, *CLINIC_ACCESS])
def billing_batch_update_status(request):
    s = BatchBillingStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    count = billing_service.batch_update_billing_status(
        request.user, s.validated_data['billing_ids'], s.validated_data['status'], **s.updates()
    )
    log_action(user=request.user, action='billing_batch_status', object_type='billing',
               detail={'ids': s.validated_data['billing_ids'], 'status': s.validated_data['status']})
    return Response({'success': True, 'updated': count})


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def billing_payments(request, pk: int):
    record = billing_service.get_billing_or_404(request.user, pk)
    if request.method == 'GET':
        return Response(PaymentSerializer(record.payments.order_by('payment_date'), many=True).data)
    s = PaymentCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    payment = billing_service.record_payment(record, processed_by=request.user, **s.validated_data)
    return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, *CLINIC_ACCESS])
def billing_payment_summary(request, pk: int):
    record = billing_service.get_billing_or_404(request.user, pk)
    return Response(billing_service.payment_summary(record))
