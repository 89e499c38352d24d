"""
Tests for RegistrationTokenService.

Tests:
- Issuing tokens (rank checks, defaults, expiry)
- Validation (unknown, used, expired, email-bound)
- Consumption (single use)
- Revocation (owner only, unused only)
"""
import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone

from apps.accounts.models import RegistrationToken
from apps.accounts.services import RegistrationTokenService
from apps.core.exceptions import (
    AlreadyUsed, InsufficientRank, InvalidToken, NotOwner, RoleNotFound,
    TokenExpired, TokenNotFound, TokenUsed, UserNotFound, ValidationError,
)


@pytest.mark.django_db
class TestGenerateToken:
    """Test token issuance."""

    def test_staff_cannot_issue_web_owner_tokens(self, staff_user):
        with pytest.raises(InsufficientRank) as excinfo:
            RegistrationTokenService.generate_token(staff_user.id, role_slug='web_owner')

        assert excinfo.value.message == 'You cannot create web_owner accounts'
        assert not RegistrationToken.objects.exists()

    def test_equal_rank_is_not_enough(self, staff_user):
        with pytest.raises(InsufficientRank):
            RegistrationTokenService.generate_token(staff_user.id, role_slug='staff')

    def test_staff_issues_house_owner_token(self, settings, staff_user):
        settings.CLIENT_URL = 'https://app.propdesk.test'

        record = RegistrationTokenService.generate_token(
            staff_user.id, email='New.Owner@Example.com', role_slug='house_owner',
        )

        assert len(record.token) == 64
        assert record.role.slug == 'house_owner'
        assert record.email == 'new.owner@example.com'
        assert record.created_by == staff_user
        assert not record.used
        assert record.metadata['created_by_email'] == staff_user.email
        assert record.registration_link == f'https://app.propdesk.test/signup?token={record.token}'

    def test_defaults_role_and_expiry(self, settings, house_owner):
        settings.REGISTRATION_DEFAULT_ROLE = 'caretaker'
        settings.REGISTRATION_TOKEN_EXPIRY_HOURS = 24

        record = RegistrationTokenService.generate_token(house_owner.id)

        assert record.role.slug == 'caretaker'
        remaining = record.expires_at - timezone.now()
        assert timedelta(hours=23) < remaining <= timedelta(hours=24)

    def test_tokens_are_unique(self, web_owner):
        tokens = {
            RegistrationTokenService.generate_token(web_owner.id, role_slug='staff').token
            for _ in range(5)
        }

        assert len(tokens) == 5

    @pytest.mark.parametrize('hours', [0, -3])
    def test_non_positive_expiry_is_rejected(self, web_owner, hours):
        with pytest.raises(ValidationError):
            RegistrationTokenService.generate_token(web_owner.id, role_slug='staff', expires_in_hours=hours)

    def test_malformed_email_is_rejected(self, web_owner):
        with pytest.raises(ValidationError):
            RegistrationTokenService.generate_token(web_owner.id, email='nobody', role_slug='staff')

    def test_unknown_role(self, web_owner):
        with pytest.raises(RoleNotFound):
            RegistrationTokenService.generate_token(web_owner.id, role_slug='landlord')

    def test_unknown_issuer(self, roles):
        with pytest.raises(UserNotFound):
            RegistrationTokenService.generate_token(uuid.uuid4(), role_slug='caretaker')


@pytest.mark.django_db
class TestValidateToken:
    """Test token validation."""

    def test_valid_token_is_returned_unchanged(self, house_owner):
        record = RegistrationTokenService.generate_token(house_owner.id, role_slug='caretaker')

        validated = RegistrationTokenService.validate_token(record.token)

        assert validated.pk == record.pk
        record.refresh_from_db()
        assert not record.used

    def test_unknown_token(self, roles):
        with pytest.raises(InvalidToken):
            RegistrationTokenService.validate_token('f' * 64)

    def test_empty_token(self, roles):
        with pytest.raises(InvalidToken):
            RegistrationTokenService.validate_token('')

    def test_expired_token(self, house_owner):
        record = RegistrationTokenService.generate_token(house_owner.id, role_slug='caretaker')
        RegistrationToken.objects.filter(pk=record.pk).update(expires_at=timezone.now() - timedelta(minutes=1))

        with pytest.raises(TokenExpired) as excinfo:
            RegistrationTokenService.validate_token(record.token)

        assert 'expired_at' in excinfo.value.details

    def test_used_token_reports_used_before_expired(self, house_owner, caretaker):
        record = RegistrationTokenService.generate_token(house_owner.id, role_slug='caretaker')
        RegistrationTokenService.consume_token(record, caretaker)
        RegistrationToken.objects.filter(pk=record.pk).update(expires_at=timezone.now() - timedelta(minutes=1))

        with pytest.raises(TokenUsed):
            RegistrationTokenService.validate_token(record.token)

    def test_email_bound_token(self, house_owner):
        record = RegistrationTokenService.generate_token(
            house_owner.id, email='jane@example.com', role_slug='caretaker',
        )

        assert RegistrationTokenService.validate_token(record.token, 'JANE@example.com')
        assert RegistrationTokenService.validate_token(record.token)
        with pytest.raises(InvalidToken):
            RegistrationTokenService.validate_token(record.token, 'someone@example.com')


@pytest.mark.django_db
class TestConsumeToken:

    def test_consume_marks_token_used(self, house_owner, caretaker):
        record = RegistrationTokenService.generate_token(house_owner.id, role_slug='caretaker')

        RegistrationTokenService.consume_token(record, caretaker)

        record.refresh_from_db()
        assert record.used
        assert record.used_by == caretaker
        assert record.used_at is not None

    def test_second_consumption_fails(self, house_owner, caretaker, make_user):
        record = RegistrationTokenService.generate_token(house_owner.id, role_slug='caretaker')
        stale = RegistrationToken.objects.get(pk=record.pk)
        RegistrationTokenService.consume_token(record, caretaker)

        with pytest.raises(TokenUsed):
            RegistrationTokenService.consume_token(stale, make_user('caretaker'))

        stale.refresh_from_db()
        assert stale.used_by == caretaker


@pytest.mark.django_db
class TestRevokeToken:
    """Test token revocation."""

    def test_issuer_revokes_unused_token(self, house_owner):
        record = RegistrationTokenService.generate_token(house_owner.id, role_slug='caretaker')

        with patch('apps.accounts.services.SecurityLogger.log_event') as log_event:
            RegistrationTokenService.revoke_token(record.id, house_owner.id)

        assert not RegistrationToken.objects.filter(pk=record.pk).exists()
        assert log_event.call_args[0][0] == 'registration_token_revoked'

    def test_revoked_token_no_longer_validates(self, house_owner):
        record = RegistrationTokenService.generate_token(house_owner.id, role_slug='caretaker')
        RegistrationTokenService.revoke_token(record.id, house_owner.id)

        with pytest.raises(InvalidToken):
            RegistrationTokenService.validate_token(record.token)

    def test_only_issuer_can_revoke(self, house_owner, staff_user):
        record = RegistrationTokenService.generate_token(house_owner.id, role_slug='caretaker')

        with pytest.raises(NotOwner):
            RegistrationTokenService.revoke_token(record.id, staff_user.id)

        assert RegistrationToken.objects.filter(pk=record.pk).exists()

    def test_used_token_cannot_be_revoked(self, house_owner, caretaker):
        record = RegistrationTokenService.generate_token(house_owner.id, role_slug='caretaker')
        RegistrationTokenService.consume_token(record, caretaker)

        with pytest.raises(AlreadyUsed):
            RegistrationTokenService.revoke_token(record.id, house_owner.id)

    def test_unknown_token(self, house_owner):
        with pytest.raises(TokenNotFound):
            RegistrationTokenService.revoke_token(uuid.uuid4(), house_owner.id)


@pytest.mark.django_db
class TestListTokens:

    def test_lists_only_own_tokens_with_filters(self, staff_user, house_owner, caretaker):
        first = RegistrationTokenService.generate_token(staff_user.id, email='a@example.com', role_slug='house_owner')
        RegistrationTokenService.generate_token(staff_user.id, role_slug='caretaker')
        RegistrationTokenService.generate_token(house_owner.id, role_slug='caretaker')
        RegistrationTokenService.consume_token(first, caretaker)

        assert RegistrationTokenService.list_tokens(staff_user.id).count() == 2
        assert RegistrationTokenService.list_tokens(staff_user.id, used=False).count() == 1
        assert list(RegistrationTokenService.list_tokens(staff_user.id, role_slug='house_owner')) == [first]
        assert list(RegistrationTokenService.list_tokens(staff_user.id, email='a@ex')) == [first]
