"""
Custom authentication backend for token-based auth.

This module defines a subclass of Django REST framework's
``TokenAuthentication`` that simply overrides the ``keyword`` used in
the ``Authorization`` header.  Keeping it separate from any view
definitions avoids circular imports when the REST framework imports
authentication classes during initialization.
"""
from __future__ import annotations

from rest_framework import authentication


class TokenAuthentication(authentication.TokenAuthentication):
    """Token authentication using the ``Token`` keyword."""

    keyword = 'Token'
