from django.urls import path

from vault import views

app_name = 'vault'

urlpatterns = [
    path('', views.VaultStateView.as_view(), name='state'),
    path('authors/<str:address>', views.AuthorProfileView.as_view(), name='author'),
]
