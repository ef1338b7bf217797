# shared/common/authentication.py
"""
Request Authentication

Customers, providers and shop owners arrive with a bearer token issued by
the user service; internal jobs (the completion sweeper, the no-show
marker) present the shared service token and act as ``system``.
Both resolve to a principal with ``id``, ``name`` and ``roles``, which is
all the booking layer reads.
"""

import jwt
import logging
from typing import Any, Dict, FrozenSet, Optional, Tuple
from django.conf import settings
from rest_framework import authentication, exceptions
from rest_framework.request import Request

logger = logging.getLogger(__name__)

SYSTEM_ROLE = 'system'
REQUIRED_CLAIMS = ['exp', 'iat', 'sub', 'iss']


class AccountPrincipal:
    """An end-user account, built from verified token claims."""

    is_authenticated = True
    is_anonymous = False
    is_active = True

    def __init__(self, claims: Dict[str, Any]):
        self.claims = claims
        self.id = str(claims['sub'])
        self.name = claims.get('name') or claims.get('username') or ''
        self.roles: FrozenSet[str] = frozenset(claims.get('roles') or ())

    def __str__(self) -> str:
        return f"Account({self.id})"


class ServicePrincipal:
    """An internal caller authenticated with the shared service token."""

    is_authenticated = True
    is_anonymous = False
    is_active = True

    def __init__(self, source: str):
        self.id = f"service:{source}"
        self.name = source
        self.roles: FrozenSet[str] = frozenset({SYSTEM_ROLE})

    def __str__(self) -> str:
        return f"Service({self.name})"


class JWTAuthentication(authentication.BaseAuthentication):
    """
    ``Authorization: Bearer <token>``. A header with another keyword is left
    for the next authenticator; a bearer token that fails verification is
    rejected outright.
    """

    keyword = 'Bearer'

    def authenticate(self, request: Request) -> Optional[Tuple[AccountPrincipal, Dict]]:
        header = authentication.get_authorization_header(request)
        if not header:
            return None

        try:
            parts = header.decode('utf-8').split()
        except UnicodeDecodeError:
            raise exceptions.AuthenticationFailed('Invalid token header encoding')

        if not parts or parts[0].lower() != self.keyword.lower():
            return None
        if len(parts) != 2:
            raise exceptions.AuthenticationFailed('Invalid token header format')

        claims = self.verify(parts[1])
        return (AccountPrincipal(claims), claims)

    def verify(self, token: str) -> Dict[str, Any]:
        jwt_settings = settings.JWT_SETTINGS
        try:
            return jwt.decode(
                token,
                jwt_settings['VERIFYING_KEY'],
                algorithms=[jwt_settings['ALGORITHM']],
                issuer=jwt_settings['ISSUER'],
                options={'require': REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError:
            raise exceptions.AuthenticationFailed('Token has expired')
        except jwt.InvalidTokenError as e:
            logger.warning(f"Rejected bearer token: {e}")
            raise exceptions.AuthenticationFailed('Invalid token')

    def authenticate_header(self, request: Request) -> str:
        return self.keyword


class ServiceAuthentication(authentication.BaseAuthentication):
    """``X-Service-Auth`` shared secret; ``X-Source-Service`` names the caller."""

    def authenticate(self, request: Request) -> Optional[Tuple[ServicePrincipal, Dict]]:
        presented = request.headers.get('X-Service-Auth')
        if not presented:
            return None

        expected = getattr(settings, 'SERVICE_AUTH_TOKEN', '')
        if not expected or presented != expected:
            raise exceptions.AuthenticationFailed('Invalid service token')

        source = request.headers.get('X-Source-Service', 'unknown')
        return (ServicePrincipal(source), {'service': source})
