from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import CLINIC_ACCESS, IsClinician
from clinic.serializers.consult import EnhanceNotesSerializer
from clinic.services.notes_ai import enhance_notes
from clinic.throttling import throttle_scope


@throttle_scope('ai_notes')
@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinician, *CLINIC_ACCESS])
def enhance_consultation_notes(request):
    """Grammar and spelling pass over a doctor's consultation notes."""
    s = EnhanceNotesSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return Response({'enhancedNotes': enhance_notes(s.validated_data['notes'])})
