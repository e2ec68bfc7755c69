from django.urls import path
from . import views

app_name = 'payments'

urlpatterns = [
    # Payment Gateway Settings
    path('settings/', views.gateway_settings, name='gateway_settings'),
    path('settings/verify/', views.gateway_verify, name='gateway_verify'),

    # Online Payments
    path('checkout/', views.checkout, name='checkout'),
    path('alipay/notify/', views.alipay_notify, name='alipay_notify'),
    path('alipay/return/', views.alipay_return, name='alipay_return'),
]
