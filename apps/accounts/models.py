"""
Account lifecycle models: registration tokens and login-as sessions.
"""
import secrets
from django.conf import settings
from django.db import models
from django.utils import timezone
from apps.core.models import BaseModel


class RegistrationTokenQuerySet(models.QuerySet):

    def unused(self):
        return self.filter(used=False)

    def issued_by(self, user_id):
        return self.filter(created_by_id=user_id)


class RegistrationToken(BaseModel):
    """
    Single-use credential that authorizes creating one account with a
    given role under the issuing user.

    A token is either consumed by a registration (``used``) or revoked
    while unused, which deletes the row.
    """

    token = models.CharField(
        max_length=64,
        unique=True,
        help_text="Opaque token string (256 bits, hex encoded)"
    )
    email = models.EmailField(
        null=True,
        blank=True,
        help_text="Email the token is reserved for, if any"
    )
    role = models.ForeignKey(
        'rbac.Role',
        on_delete=models.PROTECT,
        related_name='registration_tokens',
    )
    created_by = models.ForeignKey(
        'rbac.User',
        on_delete=models.CASCADE,
        related_name='registration_tokens',
    )
    expires_at = models.DateTimeField(db_index=True)
    used = models.BooleanField(default=False, db_index=True)
    used_at = models.DateTimeField(null=True, blank=True)
    used_by = models.ForeignKey(
        'rbac.User',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='consumed_registration_tokens',
    )
    metadata = models.JSONField(default=dict, blank=True)

    objects = RegistrationTokenQuerySet.as_manager()

    class Meta:
        db_table = 'registration_tokens'
        ordering = ['-created_at']

    def __str__(self):
        return f"Registration token for {self.role_id} ({'used' if self.used else 'unused'})"

    @staticmethod
    def generate_token():
        return secrets.token_hex(32)

    def is_expired(self, now=None):
        return self.expires_at < (now or timezone.now())

    @property
    def registration_link(self):
        client_url = getattr(settings, 'CLIENT_URL', '').rstrip('/')
        return f"{client_url}/signup?token={self.token}"


class LoginAsSessionQuerySet(models.QuerySet):

    def active(self):
        return self.filter(expires_at__gt=timezone.now())

    def expired(self):
        return self.filter(expires_at__lte=timezone.now())


class LoginAsSession(BaseModel):
    """
    An actor temporarily acting as another user.

    Deleted when the actor exits; past ``expires_at`` it is invalid even
    if nobody has deleted it yet.
    """

    actor = models.ForeignKey(
        'rbac.User',
        on_delete=models.CASCADE,
        related_name='login_as_sessions',
    )
    target = models.ForeignKey(
        'rbac.User',
        on_delete=models.CASCADE,
        related_name='impersonated_sessions',
    )
    original_role = models.ForeignKey(
        'rbac.Role',
        on_delete=models.PROTECT,
        related_name='+',
        help_text="Actor's role when the session started"
    )
    reason = models.CharField(max_length=255, default='Administrative Access')
    expires_at = models.DateTimeField(db_index=True)

    objects = LoginAsSessionQuerySet.as_manager()

    class Meta:
        db_table = 'user_login_as'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.actor_id} as {self.target_id}"

    def is_expired(self, now=None):
        return self.expires_at <= (now or timezone.now())
