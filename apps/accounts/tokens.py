"""
JWT credential issuance.

Access tokens are short-lived and signed with ``JWT_SECRET_KEY``;
refresh tokens are long-lived and signed with ``JWT_REFRESH_SECRET_KEY``.
Access tokens issued for a login-as session carry the session id so
that authentication can reject them once the session ends or expires.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from django.conf import settings

from apps.core.exceptions import AuthenticationError

ACCESS = 'access'
REFRESH = 'refresh'


class CredentialService:
    """Mint and verify access/refresh token pairs."""

    @classmethod
    def _algorithm(cls):
        return getattr(settings, 'JWT_ALGORITHM', 'HS256')

    @classmethod
    def _encode(cls, payload, secret, lifetime):
        now = datetime.now(timezone.utc)
        payload = dict(payload, iat=now, exp=now + lifetime, jti=uuid.uuid4().hex)
        return jwt.encode(payload, secret, algorithm=cls._algorithm())

    @classmethod
    def create_tokens(cls, user, login_as_session=None) -> Dict[str, Any]:
        """
        Issue an access/refresh pair for ``user``.

        Args:
            user: identity the credentials act as
            login_as_session: LoginAsSession when ``user`` is being
                impersonated; its id and actor are embedded in the access token
        """
        access_lifetime = timedelta(minutes=getattr(settings, 'JWT_ACCESS_TOKEN_MINUTES', 15))
        refresh_lifetime = timedelta(days=getattr(settings, 'JWT_REFRESH_TOKEN_DAYS', 30))

        access_claims = {'user_id': str(user.id), 'type': ACCESS}
        refresh_claims = {'user_id': str(user.id), 'type': REFRESH}
        if login_as_session is not None:
            access_claims['login_as_session'] = str(login_as_session.id)
            access_claims['actor_id'] = str(login_as_session.actor_id)
            # Impersonation never outlives its session
            session_left = login_as_session.expires_at - datetime.now(timezone.utc)
            access_lifetime = max(min(access_lifetime, session_left), timedelta(seconds=1))
            refresh_claims['login_as_session'] = str(login_as_session.id)

        return {
            'access_token': cls._encode(access_claims, settings.JWT_SECRET_KEY, access_lifetime),
            'refresh_token': cls._encode(refresh_claims, settings.JWT_REFRESH_SECRET_KEY, refresh_lifetime),
            'token_type': 'Bearer',
            'expires_in': int(access_lifetime.total_seconds()),
        }

    @classmethod
    def _decode(cls, token, secret, expected_type) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, secret, algorithms=[cls._algorithm()])
        except jwt.ExpiredSignatureError as exc:
            raise AuthenticationError('Token has expired') from exc
        except jwt.InvalidTokenError as exc:
            raise AuthenticationError('Invalid token') from exc

        if payload.get('type') != expected_type or not payload.get('user_id'):
            raise AuthenticationError('Invalid token')
        return payload

    @classmethod
    def decode_access_token(cls, token: str) -> Dict[str, Any]:
        return cls._decode(token, settings.JWT_SECRET_KEY, ACCESS)

    @classmethod
    def decode_refresh_token(cls, token: str) -> Dict[str, Any]:
        return cls._decode(token, settings.JWT_REFRESH_SECRET_KEY, REFRESH)

    @staticmethod
    def session_id_from(payload: Dict[str, Any]) -> Optional[str]:
        return payload.get('login_as_session')
