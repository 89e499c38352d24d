"""
Custom DRF authentication classes.
"""
import logging

from rest_framework.authentication import BaseAuthentication, get_authorization_header

from apps.core.exceptions import AccountInactive, AuthenticationError, SessionNotFound

logger = logging.getLogger(__name__)


class JWTAuthentication(BaseAuthentication):
    """
    Authenticate ``Authorization: Bearer <access token>`` requests.

    Tokens minted for a login-as session are only honoured while the
    session exists and has not expired. ``request.auth`` is the decoded
    token payload, so views can read ``actor_id`` and
    ``login_as_session`` from it.
    """

    keyword = 'Bearer'

    def authenticate(self, request):
        """
        Returns:
            tuple: (user, payload) if a bearer token is present, None otherwise
        """
        header = get_authorization_header(request).split()
        if not header or header[0].lower() != self.keyword.lower().encode():
            return None
        if len(header) != 2:
            raise AuthenticationError('Invalid authorization header')

        # Imported lazily so the module can be referenced from settings
        from apps.accounts.services import ImpersonationService
        from apps.accounts.tokens import CredentialService
        from apps.rbac.models import User

        payload = CredentialService.decode_access_token(header[1].decode('utf-8', errors='replace'))

        user = User.objects.select_related('role').filter(pk=payload['user_id']).first()
        if user is None:
            raise AuthenticationError('User not found')
        if not user.is_active:
            raise AccountInactive(details={'status': user.status})

        session_id = CredentialService.session_id_from(payload)
        if session_id:
            try:
                ImpersonationService.get_active_session(session_id)
            except SessionNotFound as exc:
                raise AuthenticationError('Login-as session has ended') from exc

        return (user, payload)

    def authenticate_header(self, request):
        return self.keyword
