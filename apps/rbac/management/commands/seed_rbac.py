"""
Management command to seed roles, permissions and role limits.

Creates the fixed role ladder, the canonical permission catalogue, the
default role-permission mapping and per-role limits. This command is
idempotent and safe to re-run.
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from apps.rbac.cache import get_permission_cache
from apps.rbac.models import Permission, Role, RoleLimit, RolePermission


class Command(BaseCommand):
    help = 'Seed roles, canonical permissions and role limits (idempotent)'

    ROLES = [
        {'slug': Role.DEVELOPER, 'name': 'Developer', 'rank': 999, 'description': 'System level'},
        {'slug': Role.WEB_OWNER, 'name': 'Web Owner', 'rank': 100, 'description': 'Platform owner'},
        {'slug': Role.STAFF, 'name': 'Staff', 'rank': 80, 'description': 'Platform staff'},
        {'slug': Role.HOUSE_OWNER, 'name': 'House Owner', 'rank': 60, 'description': 'Owns houses and flats'},
        {'slug': Role.CARETAKER, 'name': 'Caretaker', 'rank': 40, 'description': 'Looks after houses'},
    ]

    CANONICAL_PERMISSIONS = {
        # Houses
        'houses.view': 'View houses',
        'houses.create': 'Create houses',
        'houses.edit': 'Edit houses',
        'houses.delete': 'Delete houses',

        # Flats
        'flats.view': 'View flats',
        'flats.create': 'Create flats',
        'flats.edit': 'Edit flats',
        'flats.delete': 'Delete flats',

        # Caretakers
        'caretakers.view': 'View caretakers',
        'caretakers.assign': 'Assign caretakers to houses',

        # Notices
        'notices.view': 'View notices',
        'notices.manage': 'Create and edit notices',
        'notifications.send': 'Send notifications',

        # Users
        'users.view': 'View managed users',
        'users.create': 'Create managed users',
        'users.manage': 'Change managed user status and limits',
        'users.login_as': 'Log in as managed users',

        # Registration tokens
        'tokens.view': 'View issued registration tokens',
        'tokens.create': 'Issue and revoke registration tokens',

        # Staff administration
        'staff.view': 'View staff permissions',
        'staff.manage': 'Grant and revoke staff permissions',
        'permissions.view': 'View the permission catalogue',

        # System
        'cache.manage': 'Inspect and clear the permission cache',
    }

    # Web owners and developers pass every check without explicit keys
    ROLE_PERMISSIONS = {
        Role.STAFF: [
            'houses.view', 'flats.view', 'caretakers.view', 'notices.view',
            'users.view', 'users.create', 'users.manage', 'users.login_as',
            'tokens.view', 'tokens.create', 'permissions.view',
        ],
        Role.HOUSE_OWNER: [
            'houses.view', 'houses.create', 'houses.edit', 'houses.delete',
            'flats.view', 'flats.create', 'flats.edit', 'flats.delete',
            'caretakers.view', 'caretakers.assign',
            'notices.view', 'notices.manage', 'notifications.send',
            'users.view', 'users.create', 'users.manage', 'users.login_as',
            'tokens.view', 'tokens.create',
        ],
        Role.CARETAKER: [
            'houses.view', 'flats.view', 'flats.edit', 'notices.view',
        ],
    }

    ROLE_LIMITS = {
        Role.WEB_OWNER: {
            'max_houses': 999, 'max_caretakers': 50, 'max_flats': 1000,
            'can_login_as': [Role.STAFF, Role.HOUSE_OWNER, Role.CARETAKER],
        },
        Role.STAFF: {
            'max_houses': 50, 'max_caretakers': 20, 'max_flats': 500,
            'can_login_as': [Role.HOUSE_OWNER, Role.CARETAKER],
        },
        Role.HOUSE_OWNER: {
            'max_houses': 5, 'max_caretakers': 5, 'max_flats': 50,
            'can_login_as': [Role.CARETAKER],
        },
        Role.CARETAKER: {
            'max_houses': 0, 'max_caretakers': 0, 'max_flats': 0,
            'can_login_as': [],
        },
    }

    def add_arguments(self, parser):
        parser.add_argument(
            '--skip-role-permissions',
            action='store_true',
            help='Only seed roles, permissions and limits',
        )

    @transaction.atomic
    def handle(self, *args, **options):
        self.stdout.write('Seeding roles...')
        roles = {}
        for data in self.ROLES:
            role, created = Role.objects.update_or_create(
                slug=data['slug'],
                defaults={'name': data['name'], 'rank': data['rank'], 'description': data['description']},
            )
            roles[role.slug] = role
            self._report(created, f"role {role.slug} ({role.rank})")

        self.stdout.write('Seeding permissions...')
        permissions = {}
        for key, description in self.CANONICAL_PERMISSIONS.items():
            permission, created = Permission.objects.get_or_create(key=key, defaults={'description': description})
            if not created and permission.description != description:
                permission.description = description
                permission.save(update_fields=['description', 'updated_at'])
            permissions[key] = permission
            self._report(created, f"permission {key}")

        if not options['skip_role_permissions']:
            self.stdout.write('Assigning role permissions...')
            for slug, keys in self.ROLE_PERMISSIONS.items():
                for key in keys:
                    _, created = RolePermission.objects.grant_permission(roles[slug], permissions[key])
                    if created:
                        self.stdout.write(f"  {slug} -> {key}")

        self.stdout.write('Seeding role limits...')
        for slug, limits in self.ROLE_LIMITS.items():
            _, created = RoleLimit.objects.update_or_create(role=roles[slug], defaults=limits)
            self._report(created, f"limits for {slug}")

        transaction.on_commit(get_permission_cache().invalidate_all)

        self.stdout.write(self.style.SUCCESS(
            f"\n✓ Seeding complete: {len(roles)} roles, {len(permissions)} permissions"
        ))

    def _report(self, created, label):
        if created:
            self.stdout.write(self.style.SUCCESS(f"✓ Created: {label}"))
        else:
            self.stdout.write(self.style.HTTP_INFO(f"  Exists: {label}"))
