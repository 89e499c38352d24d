"""
Account API URLs.

Provides endpoints for:
- Registration, login, refresh and profile
- Registration tokens
- Login-as sessions
- Managed users
"""
from django.urls import path
from apps.accounts.views import (
    RegisterView,
    LoginView,
    RefreshView,
    MeView,
    SetPasswordView,
    GoogleLinkView,
    RegistrationTokenListView,
    RegistrationTokenValidateView,
    RegistrationTokenDetailView,
    LoginAsView,
    LoginAsExitView,
    LoginAsSessionListView,
    ManagedUserListView,
    UserStatusView,
    UserLimitsView,
)

app_name = 'accounts'

urlpatterns = [
    # Authentication
    path('register', RegisterView.as_view(), name='register'),
    path('login', LoginView.as_view(), name='login'),
    path('refresh', RefreshView.as_view(), name='refresh'),
    path('me', MeView.as_view(), name='me'),
    path('password', SetPasswordView.as_view(), name='set-password'),
    path('google/link', GoogleLinkView.as_view(), name='google-link'),

    # Registration tokens
    path('registration-tokens', RegistrationTokenListView.as_view(), name='registration-token-list'),
    path('registration-tokens/validate', RegistrationTokenValidateView.as_view(), name='registration-token-validate'),
    path('registration-tokens/<uuid:token_id>', RegistrationTokenDetailView.as_view(), name='registration-token-detail'),

    # Login-as
    path('login-as', LoginAsView.as_view(), name='login-as'),
    path('login-as/sessions', LoginAsSessionListView.as_view(), name='login-as-sessions'),
    path('login-as/<uuid:session_id>/exit', LoginAsExitView.as_view(), name='login-as-exit'),

    # Managed users
    path('users', ManagedUserListView.as_view(), name='user-list'),
    path('users/<uuid:user_id>/status', UserStatusView.as_view(), name='user-status'),
    path('users/<uuid:user_id>/limits', UserLimitsView.as_view(), name='user-limits'),
]
