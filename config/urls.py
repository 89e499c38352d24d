"""
URL configuration for Propdesk.
"""
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # Authentication, registration tokens, login-as and managed users
    path('v1/auth/', include('apps.accounts.urls')),

    # Permissions, staff grants and permission cache
    path('v1/rbac/', include('apps.rbac.urls')),
]
