from django.urls import path

from facilitator.views import (
    AuthorizeMerchantView,
    MerchantDetailView,
    MerchantListView,
    PayView,
    PolicyView,
)

app_name = 'facilitator'

urlpatterns = [
    path('pay', PayView.as_view(), name='pay'),
    path('policy/<str:address>', PolicyView.as_view(), name='policy'),
    path(
        'policy/<str:address>/authorize-merchant',
        AuthorizeMerchantView.as_view(),
        name='authorize-merchant',
    ),
    path('merchants', MerchantListView.as_view(), name='merchants'),
    path('merchants/<str:address>', MerchantDetailView.as_view(), name='merchant'),
]
