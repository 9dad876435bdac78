"""
Authentication views.

Login hands out both a DRF token (``Authorization: Token <key>``) and a
JWT pair; refresh and logout operate on the JWT refresh token.  These
live apart from :mod:`clinic.authentication` so DRF can import the
authentication class without pulling in the views.
"""
from __future__ import annotations

import logging

from django.contrib.auth import authenticate
from rest_framework.authtoken.models import Token
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from rest_framework_simplejwt.serializers import TokenRefreshSerializer
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import RefreshToken

from clinic.serializers.auth import LoginSerializer, RefreshSerializer
from clinic.services.audit import log_action
from clinic.services.subscription import evaluate_access
from clinic.throttling import throttle_scope

logger = logging.getLogger(__name__)


@throttle_scope('login')
@api_view(['POST'])
@permission_classes([AllowAny])
def login_view(request):
    """Username/password login."""
    s = LoginSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    username = s.validated_data['username']
    password = s.validated_data['password']

    user = authenticate(request, username=username, password=password)
    if not user:
        log_action(user=None, action='login', object_type='user',
                   detail={'result': 'fail', 'username': username, 'ip': request.META.get('REMOTE_ADDR')})
        logger.warning('failed login for %s', username)
        raise ValidationError({'detail': 'invalid username or password'})

    log_action(user=user, action='login', object_type='user', object_id=user.id,
               detail={'result': 'ok', 'ip': request.META.get('REMOTE_ADDR')})

    token_obj, _ = Token.objects.get_or_create(user=user)
    refresh = RefreshToken.for_user(user)
    access = evaluate_access(user)

    return Response({
        'ok': True,
        'token': token_obj.key,
        'jwt_access': str(refresh.access_token),
        'jwt_refresh': str(refresh),
        'role': user.role,
        'user': {
            'id': user.id,
            'username': user.username,
            'name': user.get_full_name() or user.username,
            'role': user.role,
            'tenantId': user.tenant_id,
        },
        'subscription': access.as_dict(),
    })


@api_view(['POST'])
@permission_classes([AllowAny])
def jwt_refresh_view(request):
    """Return a new access token from a refresh token."""
    s = TokenRefreshSerializer(data=request.data)
    try:
        s.is_valid(raise_exception=True)
    except TokenError as e:
        raise InvalidToken(e.args[0]) from e
    data = dict(s.validated_data)
    data['jwt_access'] = data.pop('access')
    if 'refresh' in data:
        data['jwt_refresh'] = data.pop('refresh')
    return Response(data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def jwt_logout_view(request):
    """Blacklist the given refresh token, or every outstanding one for the user."""
    refresh = request.data.get('refresh')
    if refresh:
        s = RefreshSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        try:
            RefreshToken(s.validated_data['refresh']).blacklist()
        except TokenError as e:
            raise ValidationError({'refresh': str(e)}) from e
        count = 1
    else:
        count = 0
        for token in OutstandingToken.objects.filter(user=request.user):
            _, created = BlacklistedToken.objects.get_or_create(token=token)
            count += int(created)
    Token.objects.filter(user=request.user).delete()
    log_action(user=request.user, action='logout', object_type='user', object_id=request.user.id)
    return Response({'ok': True, 'blacklisted': count})
