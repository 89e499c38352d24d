"""
Account services.

Implements:
- RegistrationTokenService: issue, validate, consume and revoke single-use
  registration tokens
- ImpersonationService: start and end login-as sessions
- AuthService: registration, login, credential refresh, password and
  Google account linking
- UserAdminService: creating managed users and changing their status
"""
import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.accounts.models import LoginAsSession, RegistrationToken
from apps.accounts.tokens import CredentialService
from apps.core.exceptions import (
    AccountInactive, ActorNotFound, AlreadyExists, AlreadyUsed,
    AuthenticationError, InsufficientRank, InvalidToken, NotOwner,
    NotPermitted, NotSessionOwner, OutOfHierarchy, RegistrationDisabled,
    RoleNotAllowed, RoleNotFound, SessionExpired, SessionNotFound,
    TargetNotFound, TokenExpired, TokenNotFound, TokenUsed, UserNotFound,
    ValidationError,
)
from apps.core.logging import SecurityLogger
from apps.core.validators import InputValidator, validate_registration_data
from apps.rbac.access import ALWAYS_ALLOW_ROLES
from apps.rbac.hierarchy import HierarchyWalker
from apps.rbac.models import Role, RoleLimit, User
from apps.rbac.services import PermissionService

logger = logging.getLogger(__name__)


def _get_user(user_id, error=UserNotFound, message='User not found') -> User:
    user = User.objects.select_related('role').filter(pk=user_id).first()
    if user is None:
        raise error(message, details={'user_id': str(user_id)})
    return user


def _get_role(slug) -> Role:
    role = Role.objects.by_slug(slug)
    if role is None:
        raise RoleNotFound(f"Role {slug} not found", details={'role': slug})
    return role


def _check_outranks(actor: User, role: Role):
    if not actor.role.outranks(role):
        raise InsufficientRank(
            f"You cannot create {role.slug} accounts",
            details={
                'your_role': actor.role.slug,
                'your_rank': actor.role.rank,
                'target_role': role.slug,
                'target_rank': role.rank,
            },
        )


class RegistrationTokenService:
    """
    Issues single-use registration tokens.

    Token states: created -> used, or created -> revoked (deleted).
    Validation never mutates; consumption happens only inside the
    transaction that creates the new user.
    """

    @classmethod
    def generate_token(cls, issuer_id, email: Optional[str] = None, role_slug: Optional[str] = None,
                       expires_in_hours: Optional[int] = None, metadata: Optional[dict] = None) -> RegistrationToken:
        """
        Issue a token that lets someone register with ``role_slug``.

        Raises:
            UserNotFound: issuer does not exist
            RoleNotFound: unknown role
            InsufficientRank: issuer does not strictly outrank the role
            ValidationError: non-positive expiry or malformed email
        """
        issuer = _get_user(issuer_id, message='Creator user not found')
        role = _get_role(role_slug or settings.REGISTRATION_DEFAULT_ROLE)
        _check_outranks(issuer, role)

        if expires_in_hours is None:
            expires_in_hours = settings.REGISTRATION_TOKEN_EXPIRY_HOURS
        if expires_in_hours <= 0:
            raise ValidationError('Token expiry must be a positive number of hours')

        if email:
            email = User.objects.normalize_email(email)
            if not InputValidator.validate_email(email):
                raise ValidationError('Please enter a valid email address', details={'email': email})

        record = RegistrationToken.objects.create(
            token=RegistrationToken.generate_token(),
            email=email or None,
            role=role,
            created_by=issuer,
            expires_at=timezone.now() + timedelta(hours=expires_in_hours),
            metadata={**(metadata or {}), 'created_by_email': issuer.email},
        )

        logger.info(
            "Registration token issued",
            extra={
                'token_id': str(record.id),
                'issuer_id': str(issuer.id),
                'role': role.slug,
                'expires_at': record.expires_at.isoformat(),
            }
        )
        return record

    @classmethod
    def validate_token(cls, token: str, email: Optional[str] = None) -> RegistrationToken:
        """
        Return the token record if it can still be used.

        Raises:
            InvalidToken: no such token, or it is reserved for another email
            TokenUsed: already consumed
            TokenExpired: past its expiry
        """
        record = (
            RegistrationToken.objects.select_related('role', 'created_by')
            .filter(token=token)
            .first()
        ) if token else None
        if record is None:
            raise InvalidToken('Invalid registration token')
        if record.used:
            raise TokenUsed('This registration token has already been used')
        if record.is_expired():
            raise TokenExpired(
                'This registration token has expired',
                details={'expired_at': record.expires_at.isoformat()},
            )
        if email and record.email and User.objects.normalize_email(email) != record.email.lower():
            raise InvalidToken('This registration token was issued for a different email')
        return record

    @classmethod
    def consume_token(cls, record: RegistrationToken, user: User) -> None:
        """
        Mark a token used by ``user``.

        Must run inside the transaction that created ``user``; losing a
        race to another registration raises TokenUsed and rolls that
        transaction back.
        """
        now = timezone.now()
        updated = RegistrationToken.objects.filter(pk=record.pk, used=False).update(
            used=True, used_at=now, used_by=user, updated_at=now,
        )
        if not updated:
            raise TokenUsed('This registration token has already been used')
        record.used, record.used_at, record.used_by = True, now, user

    @classmethod
    def revoke_token(cls, token_id, issuer_id) -> None:
        """
        Delete an unused token.

        Raises:
            TokenNotFound: no such token
            NotOwner: token was issued by someone else
            AlreadyUsed: token has been consumed
        """
        record = RegistrationToken.objects.filter(pk=token_id).first()
        if record is None:
            raise TokenNotFound('Registration token not found')
        if str(record.created_by_id) != str(issuer_id):
            raise NotOwner('You can only revoke your own registration tokens')
        if record.used:
            raise AlreadyUsed('Cannot revoke a token that has already been used')

        record.delete()
        SecurityLogger.log_event(
            'registration_token_revoked',
            level='info',
            token_id=str(token_id),
            issuer_id=str(issuer_id),
        )

    @classmethod
    def list_tokens(cls, issuer_id, used: Optional[bool] = None, role_slug: Optional[str] = None,
                    email: Optional[str] = None):
        tokens = (
            RegistrationToken.objects.issued_by(issuer_id)
            .select_related('role', 'created_by', 'used_by')
            .order_by('-created_at')
        )
        if used is not None:
            tokens = tokens.filter(used=used)
        if role_slug:
            tokens = tokens.filter(role__slug=role_slug)
        if email:
            tokens = tokens.filter(email__icontains=email)
        return tokens


class ImpersonationService:
    """
    Login-as sessions.

    An actor may act as a target when the actor's role lists the target's
    role in ``RoleLimit.can_login_as`` and, below the top tier, the target
    sits in the actor's managed subtree.
    """

    DEFAULT_REASON = 'Administrative Access'

    def __init__(self, hierarchy: Optional[HierarchyWalker] = None):
        self.hierarchy = hierarchy or HierarchyWalker()

    @property
    def session_lifetime(self):
        return timedelta(hours=getattr(settings, 'LOGIN_AS_SESSION_HOURS', 2))

    def login_as(self, actor_id, target_id, reason: Optional[str] = None,
                 within_session=None) -> Dict[str, Any]:
        """
        Start acting as ``target_id``.

        ``within_session`` is the login-as session the caller is already
        acting under, if any. Sessions do not nest.

        Returns:
            dict with ``tokens`` (for the target), ``user`` (the target)
            and ``session`` (LoginAsSession, carrying the original role)

        Raises:
            ActorNotFound, TargetNotFound, NotPermitted, RoleNotAllowed,
            OutOfHierarchy
        """
        if within_session:
            raise NotPermitted('You cannot start login-as while acting as another user')

        actor = _get_user(actor_id, error=ActorNotFound, message='Current user not found')
        target = _get_user(target_id, error=TargetNotFound, message='Target user not found')

        limits = RoleLimit.objects.filter(role_id=actor.role_id).first()
        allowed_roles = list(limits.can_login_as or []) if limits else []
        if not allowed_roles:
            raise NotPermitted('You do not have permission to login as other users')

        if target.role.slug not in allowed_roles:
            raise RoleNotAllowed(
                f"You do not have permission to login as {target.role.slug} users",
                details={'target_role': target.role.slug, 'allowed_roles': allowed_roles},
            )

        if actor.role.slug not in ALWAYS_ALLOW_ROLES and not self.hierarchy.is_managed(actor.id, target.id):
            raise OutOfHierarchy('You can only login as users under your management hierarchy')

        session = LoginAsSession.objects.create(
            actor=actor,
            target=target,
            original_role=actor.role,
            reason=reason or self.DEFAULT_REASON,
            expires_at=timezone.now() + self.session_lifetime,
        )
        tokens = CredentialService.create_tokens(target, login_as_session=session)

        SecurityLogger.log_login_as('login_as_started', actor.id, target.id, session.id, reason=session.reason)
        return {'tokens': tokens, 'user': target, 'session': session}

    def exit_login_as(self, session_id, requester_id) -> Dict[str, Any]:
        """
        End a session and return credentials for the original actor.

        Raises:
            SessionNotFound: no such session
            NotSessionOwner: requester did not start the session
        """
        session = LoginAsSession.objects.select_related('actor__role').filter(pk=session_id).first()
        if session is None:
            raise SessionNotFound('Login-as session not found')
        if str(session.actor_id) != str(requester_id):
            raise NotSessionOwner('You can only exit your own login-as sessions')

        actor = session.actor
        target_id = session.target_id
        session.delete()
        tokens = CredentialService.create_tokens(actor)

        SecurityLogger.log_login_as('login_as_ended', actor.id, target_id, session_id)
        return {'tokens': tokens, 'user': actor}

    @staticmethod
    def get_active_session(session_id) -> LoginAsSession:
        """
        Raises:
            SessionNotFound: session was ended or never existed
            SessionExpired: session is past its expiry
        """
        session = LoginAsSession.objects.filter(pk=session_id).first()
        if session is None:
            raise SessionNotFound('Login-as session not found')
        if session.is_expired():
            raise SessionExpired('Login-as session has expired')
        return session

    @staticmethod
    def active_sessions(actor_id):
        return LoginAsSession.objects.active().filter(actor_id=actor_id).select_related('target', 'original_role')

    @staticmethod
    def purge_expired_sessions() -> int:
        deleted, _ = LoginAsSession.objects.expired().delete()
        return deleted


class AuthService:
    """
    Registration, login and credential refresh.
    """

    @classmethod
    def _session_payload(cls, user: User, tokens: dict, **extra) -> Dict[str, Any]:
        permissions = PermissionService().get_user_permissions(user.id)
        return {'user': user, 'tokens': tokens, 'permissions': sorted(permissions), **extra}

    @classmethod
    def register(cls, data: Dict[str, Any], token: Optional[str] = None) -> Dict[str, Any]:
        """
        Register a new account.

        With ``data['token']`` the account gets the token's role and the
        issuer as parent, and the token is consumed in the same
        transaction. Without one, public registration must be enabled and
        the default role is used.

        Raises:
            ValidationError, RegistrationDisabled, AlreadyExists,
            InvalidToken, TokenUsed, TokenExpired, RoleNotFound
        """
        validate_registration_data(data)

        token = token or data.get('token')
        if not token and not settings.REGISTRATION_PUBLIC_ENABLED:
            raise RegistrationDisabled()

        email = User.objects.normalize_email(data['email'])
        name = data['name'].strip()
        phone = data.get('phone') or None

        existing = User.objects.select_related('role').filter(email=email).first()
        if existing is not None:
            if existing.google_id and not existing.has_password:
                existing.set_password(data['password'])
                existing.name = name or existing.name
                existing.phone = phone or existing.phone
                existing.save(update_fields=['password', 'name', 'phone', 'updated_at'])
                tokens = CredentialService.create_tokens(existing)
                return cls._session_payload(existing, tokens, registration_method='google_link')
            raise AlreadyExists('User already exists')

        method = 'token' if token else 'public'
        try:
            with transaction.atomic():
                if token:
                    record = RegistrationTokenService.validate_token(token, email)
                    role, parent = record.role, record.created_by
                else:
                    record = None
                    role, parent = _get_role(settings.REGISTRATION_DEFAULT_ROLE), None

                user = User.objects.create_user(
                    email,
                    data['password'],
                    name=name,
                    phone=phone,
                    role=role,
                    parent=parent,
                    metadata={
                        'registered_via': method,
                        'registration_token_id': str(record.id) if record else None,
                        'registered_at': timezone.now().isoformat(),
                    },
                )
                if record is not None:
                    RegistrationTokenService.consume_token(record, user)
        except IntegrityError as exc:
            raise AlreadyExists('User already exists') from exc

        logger.info(
            "User registered",
            extra={'user_id': str(user.id), 'role': role.slug, 'registration_method': method},
        )
        tokens = CredentialService.create_tokens(user)
        return cls._session_payload(user, tokens, registration_method=method)

    @classmethod
    def login(cls, email: str, password: str, ip_address: Optional[str] = None) -> Dict[str, Any]:
        """
        Authenticate with email and password.

        Raises:
            AuthenticationError: unknown email, no password set, or wrong password
            AccountInactive: account is inactive or suspended
        """
        user = User.objects.select_related('role').filter(email=User.objects.normalize_email(email)).first()

        if user is None:
            SecurityLogger.log_failed_login(email, ip_address, reason='unknown_email')
            raise AuthenticationError('Invalid email or password')

        if not user.has_password:
            SecurityLogger.log_failed_login(email, ip_address, reason='no_password')
            raise AuthenticationError('Please use Google login or set a password first')

        if not user.check_password(password):
            SecurityLogger.log_failed_login(email, ip_address, reason='bad_password')
            raise AuthenticationError('Invalid email or password')

        if not user.is_active:
            SecurityLogger.log_failed_login(email, ip_address, reason=f"status_{user.status}")
            raise AccountInactive(
                f"Account is {user.status}. Please contact administrator.",
                details={'status': user.status},
            )

        user.update_last_login()
        tokens = CredentialService.create_tokens(user)
        return cls._session_payload(user, tokens)

    @classmethod
    def refresh(cls, refresh_token: str) -> Dict[str, Any]:
        """
        Exchange a refresh token for a new credential pair.

        Refresh tokens minted during a login-as session only work while
        that session is active.
        """
        payload = CredentialService.decode_refresh_token(refresh_token)
        user = User.objects.select_related('role').filter(pk=payload['user_id']).first()
        if user is None:
            raise AuthenticationError('Invalid token')
        if not user.is_active:
            raise AccountInactive(details={'status': user.status})

        session_id = CredentialService.session_id_from(payload)
        session = None
        if session_id:
            try:
                session = ImpersonationService.get_active_session(session_id)
            except SessionNotFound as exc:
                raise AuthenticationError('Login-as session has ended') from exc
        return CredentialService.create_tokens(user, login_as_session=session)

    @classmethod
    def set_password(cls, user_id, password: str) -> User:
        strength = InputValidator.validate_password_strength(password or '')
        if not strength['valid']:
            raise ValidationError(strength['errors'][0], details={'password': strength['errors']})
        user = _get_user(user_id)
        user.set_password(password)
        user.save(update_fields=['password', 'updated_at'])
        return user

    @classmethod
    def link_google_account(cls, user_id, google_id: str) -> User:
        """
        Raises:
            AlreadyExists: the Google account is linked to another user
        """
        if User.objects.filter(google_id=google_id).exclude(pk=user_id).exists():
            raise AlreadyExists('This Google account is already linked to another user')
        user = _get_user(user_id)
        user.google_id = google_id
        user.save(update_fields=['google_id', 'updated_at'])
        return user


class UserAdminService:
    """
    Administrative operations on managed users.
    """

    def __init__(self, hierarchy: Optional[HierarchyWalker] = None):
        self.hierarchy = hierarchy or HierarchyWalker()

    def create_user_account(self, creator_id, email: str, role_slug: str, password: Optional[str] = None,
                            name: str = '', phone: Optional[str] = None, metadata: Optional[dict] = None,
                            house_limit: Optional[int] = None) -> Dict[str, Any]:
        """
        Create a user directly, parented to the creator.

        Returns:
            dict with ``user`` and ``password`` (only when one was generated)

        Raises:
            UserNotFound, RoleNotFound, InsufficientRank, ValidationError,
            AlreadyExists
        """
        creator = _get_user(creator_id, message='Creator not found')
        role = _get_role(role_slug)
        _check_outranks(creator, role)

        email = User.objects.normalize_email(email)
        if not InputValidator.validate_email(email):
            raise ValidationError('Please enter a valid email address', details={'email': email})
        if phone and not InputValidator.validate_phone(phone):
            raise ValidationError('Phone number must be exactly 11 digits')

        generated = None
        if not password:
            generated = password = secrets.token_urlsafe(12)
        else:
            strength = InputValidator.validate_password_strength(password)
            if not strength['valid']:
                raise ValidationError(strength['errors'][0], details={'password': strength['errors']})

        if User.objects.filter(email=email).exists():
            raise AlreadyExists('User with this email already exists')

        try:
            with transaction.atomic():
                user = User.objects.create_user(
                    email,
                    password,
                    name=name,
                    phone=phone or None,
                    role=role,
                    parent=creator,
                    metadata={
                        'created_by': creator.email,
                        'created_at': timezone.now().isoformat(),
                        'house_limit': house_limit,
                        **(metadata or {}),
                    },
                )
        except IntegrityError as exc:
            raise AlreadyExists('User with this email already exists') from exc

        logger.info(
            "Managed user created",
            extra={'user_id': str(user.id), 'creator_id': str(creator.id), 'role': role.slug},
        )
        return {'user': user, 'password': generated}

    def update_user_status(self, actor_id, user_id, status: str, reason: Optional[str] = None) -> User:
        """
        Activate, deactivate or suspend a managed user.

        Raises:
            ValidationError: unknown status, or changing your own status
            OutOfHierarchy: actor does not manage the user
        """
        valid = {choice for choice, _ in User.STATUS_CHOICES}
        if status not in valid:
            raise ValidationError('Invalid status value. Use: active, inactive, or suspended.')

        actor = _get_user(actor_id, error=ActorNotFound, message='Current user not found')
        user = _get_user(user_id)
        if actor.id == user.id:
            raise ValidationError('You cannot change your own status')
        if actor.role.slug not in ALWAYS_ALLOW_ROLES and not self.hierarchy.is_managed(actor.id, user.id):
            raise OutOfHierarchy('You can only manage users under your management hierarchy')

        user.status = status
        user.metadata = {
            **(user.metadata or {}),
            'status_changed_at': timezone.now().isoformat(),
            'status_changed_by': str(actor.id),
            'status_reason': reason,
        }
        user.save(update_fields=['status', 'metadata', 'updated_at'])

        SecurityLogger.log_event(
            'user_status_changed',
            level='info',
            actor_id=str(actor.id),
            user_id=str(user.id),
            status=status,
        )
        return user

    def update_user_limits(self, actor_id, user_id, house_limit: Optional[int] = None) -> User:
        """
        Raises:
            ValidationError: negative limit
            OutOfHierarchy: actor does not manage the user
        """
        actor = _get_user(actor_id, error=ActorNotFound, message='Current user not found')
        user = _get_user(user_id)
        if actor.role.slug not in ALWAYS_ALLOW_ROLES and not self.hierarchy.is_managed(actor.id, user.id):
            raise OutOfHierarchy('You can only manage users under your management hierarchy')

        metadata = dict(user.metadata or {})
        if house_limit is not None:
            if house_limit < 0:
                raise ValidationError('House limit cannot be negative')
            metadata['house_limit'] = house_limit
        metadata['limits_updated_at'] = timezone.now().isoformat()
        user.metadata = metadata
        user.save(update_fields=['metadata', 'updated_at'])
        return user

    def get_managed_users(self, actor_id, role_slug: Optional[str] = None):
        return self.hierarchy.get_managed_users(actor_id, role_slug=role_slug)
