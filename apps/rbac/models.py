"""
RBAC models for the property-management platform.

Implements:
- User identity with a role, an optional parent (creator/manager) and a status
- Role (ranked authorization tier)
- Permission (dot-namespaced capability keys)
- RolePermission (maps permissions to roles)
- StaffPermission (individual grants to staff members, with revocation history)
- RoleLimit (per-role quotas and login-as allow-list)
"""
import logging
import uuid
from django.db import models
from django.db.models import Q
from django.contrib.auth.hashers import make_password, check_password
from django.utils import timezone
from apps.core.models import BaseModel

logger = logging.getLogger(__name__)


class RoleManager(models.Manager):
    """Manager for Role queries."""

    def by_slug(self, slug):
        """Find role by slug."""
        return self.filter(slug=slug).first()

    def below_rank(self, rank):
        """Roles strictly below the given rank."""
        return self.filter(rank__lt=rank)


class Role(BaseModel):
    """
    Ranked authorization tier.

    Rank is the only thing compared when deciding who may create, grant
    to, or impersonate whom: higher rank means broader authority.
    """

    DEVELOPER = 'developer'
    WEB_OWNER = 'web_owner'
    STAFF = 'staff'
    HOUSE_OWNER = 'house_owner'
    CARETAKER = 'caretaker'

    slug = models.SlugField(
        max_length=50,
        unique=True,
        help_text="Stable role identifier (e.g., 'house_owner')"
    )
    name = models.CharField(
        max_length=100,
        help_text="Human-readable role name"
    )
    rank = models.PositiveIntegerField(
        db_index=True,
        help_text="Authority rank, higher outranks lower"
    )
    description = models.TextField(
        blank=True,
        help_text="Role description"
    )

    objects = RoleManager()

    class Meta:
        db_table = 'roles'
        ordering = ['-rank']

    def __str__(self):
        return f"{self.name} ({self.rank})"

    def outranks(self, other):
        """Whether this role is strictly above ``other``."""
        return self.rank > other.rank


class UserManager(models.Manager):
    """
    Manager for User queries.
    """

    def active(self):
        """Return only active users."""
        return self.filter(status=User.STATUS_ACTIVE)

    def by_email(self, email):
        """Find user by email."""
        return self.filter(email=self.normalize_email(email)).first()

    def with_role(self, slug):
        return self.filter(role__slug=slug)

    def create_user(self, email, password=None, **extra_fields):
        """
        Create a new user with hashed password.

        ``role`` must be supplied, either as a Role instance or through
        ``role_id``.
        """
        if not email:
            raise ValueError('Email address is required')

        user = self.model(email=self.normalize_email(email), **extra_fields)
        if password:
            user.set_password(password)
        user.save(using=self._db)
        return user

    @classmethod
    def normalize_email(cls, email):
        """
        Normalize the email address by lowercasing it and trimming whitespace.
        """
        return (email or '').strip().lower()

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(BaseModel):
    """
    Platform user identity.

    Users are never hard-deleted: deactivation and suspension are
    status transitions. ``parent`` points at the user who created (and
    therefore manages) this account.
    """

    STATUS_ACTIVE = 'active'
    STATUS_INACTIVE = 'inactive'
    STATUS_SUSPENDED = 'suspended'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_INACTIVE, 'Inactive'),
        (STATUS_SUSPENDED, 'Suspended'),
    ]

    uuid = models.UUIDField(
        default=uuid.uuid4,
        unique=True,
        editable=False,
        help_text="External-facing identifier"
    )
    email = models.EmailField(
        unique=True,
        help_text="User email address"
    )
    password = models.CharField(
        max_length=255,
        blank=True,
        default='',
        help_text="Hashed password, empty for accounts without one"
    )
    google_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Linked Google account id"
    )
    name = models.CharField(
        max_length=255,
        blank=True,
        help_text="Display name"
    )
    phone = models.CharField(
        max_length=32,
        null=True,
        blank=True,
        help_text="Phone number"
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.PROTECT,
        related_name='users',
        help_text="Authorization tier"
    )
    parent = models.ForeignKey(
        'self',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='children',
        help_text="User who created and manages this account"
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_ACTIVE,
        db_index=True,
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Free-form profile and administration data"
    )
    last_login_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last login timestamp"
    )

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['role', 'status']),
            models.Index(fields=['parent']),
        ]

    def __str__(self):
        return self.email

    def check_password(self, raw_password):
        """Check if provided password matches stored hash."""
        if not self.password:
            return False
        return check_password(raw_password, self.password)

    def set_password(self, raw_password):
        """Set user password (hashes automatically)."""
        self.password = make_password(raw_password)

    @property
    def has_password(self):
        return bool(self.password)

    @property
    def is_active(self):
        return self.status == self.STATUS_ACTIVE

    def update_last_login(self):
        """Update last_login_at to current time."""
        self.last_login_at = timezone.now()
        self.save(update_fields=['last_login_at', 'updated_at'])

    @property
    def is_authenticated(self):
        """
        Always return True for User instances.
        This is required for Django authentication compatibility.
        """
        return True

    @property
    def is_anonymous(self):
        return False

    def natural_key(self):
        return (self.email,)


class PermissionManager(models.Manager):
    """Manager for Permission queries."""

    def by_key(self, key):
        """Find permission by key."""
        return self.filter(key=key).first()

    def by_category(self, category):
        """Get all permissions whose key starts with ``category.``."""
        return self.filter(key__startswith=f"{category}.")


class Permission(BaseModel):
    """
    Capability identified by a dot-namespaced key (e.g., 'houses.create').

    Keys are immutable once referenced by a role or a grant.
    """

    key = models.CharField(
        max_length=100,
        unique=True,
        help_text="Unique permission key (e.g., 'houses.create')"
    )
    description = models.TextField(
        blank=True,
        help_text="What this permission allows"
    )

    objects = PermissionManager()

    class Meta:
        db_table = 'permissions'
        ordering = ['key']

    def __str__(self):
        return self.key

    @property
    def category(self):
        return self.key.split('.', 1)[0]


class RolePermissionManager(models.Manager):
    """Manager for RolePermission queries."""

    def for_role(self, role):
        return self.filter(role=role)

    def grant_permission(self, role, permission):
        """Grant permission to role (idempotent)."""
        return self.get_or_create(role=role, permission=permission)

    def revoke_permission(self, role, permission):
        """Remove permission from role."""
        return self.filter(role=role, permission=permission).delete()


class RolePermission(BaseModel):
    """
    Maps permissions to roles.

    Every holder of the role has the permission.
    """

    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='role_permissions',
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.PROTECT,
        related_name='role_permissions',
    )

    objects = RolePermissionManager()

    class Meta:
        db_table = 'role_permissions'
        ordering = ['role', 'permission']
        constraints = [
            models.UniqueConstraint(fields=['role', 'permission'], name='unique_role_permission'),
        ]

    def __str__(self):
        return f"{self.role.slug} -> {self.permission.key}"


class StaffPermissionQuerySet(models.QuerySet):

    def active(self):
        return self.filter(revoked_at__isnull=True)

    def revoked(self):
        return self.filter(revoked_at__isnull=False)

    def for_user(self, user_id):
        return self.filter(user_id=user_id)


class StaffPermission(BaseModel):
    """
    Individual permission grant to a staff member.

    Revoking stamps ``revoked_by``/``revoked_at`` and keeps the row, so
    the table doubles as grant history. At most one active grant may
    exist per (user, permission).
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='staff_permissions',
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.PROTECT,
        related_name='staff_permissions',
    )
    granted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='staff_permissions_granted',
    )
    granted_at = models.DateTimeField(default=timezone.now)
    revoked_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='staff_permissions_revoked',
    )
    revoked_at = models.DateTimeField(null=True, blank=True)

    objects = StaffPermissionQuerySet.as_manager()

    class Meta:
        db_table = 'staff_permissions'
        ordering = ['-granted_at']
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'permission'],
                condition=Q(revoked_at__isnull=True),
                name='unique_active_staff_permission',
            ),
        ]
        indexes = [
            models.Index(fields=['user', 'revoked_at']),
        ]

    def __str__(self):
        state = 'revoked' if self.revoked_at else 'active'
        return f"{self.user_id} {self.permission_id} ({state})"

    @property
    def is_active(self):
        return self.revoked_at is None

    def revoke(self, revoked_by):
        self.revoked_by = revoked_by
        self.revoked_at = timezone.now()
        self.save(update_fields=['revoked_by', 'revoked_at', 'updated_at'])


class RoleLimit(BaseModel):
    """
    Per-role quotas and the list of role slugs members may log in as.
    """

    role = models.OneToOneField(
        Role,
        on_delete=models.CASCADE,
        related_name='limits',
    )
    max_houses = models.PositiveIntegerField(default=0)
    max_caretakers = models.PositiveIntegerField(default=0)
    max_flats = models.PositiveIntegerField(default=0)
    can_login_as = models.JSONField(
        default=list,
        blank=True,
        help_text="Role slugs members of this role may impersonate"
    )

    class Meta:
        db_table = 'role_limits'

    def __str__(self):
        return f"Limits for {self.role.slug}"

    def allows_login_as(self, role_slug):
        return role_slug in (self.can_login_as or [])
