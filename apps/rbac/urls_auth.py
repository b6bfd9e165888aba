"""
URL routing for authentication endpoints.
"""
from django.urls import path
from apps.rbac.views import LoginView

app_name = 'auth'

urlpatterns = [
    path('login', LoginView.as_view(), name='login'),
]
