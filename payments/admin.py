from django.contrib import admin
from unfold.admin import ModelAdmin

from .forms import AlipaySettingsForm
from .models import GatewayLog, GatewayTransaction, PaymentGatewayConfig


@admin.register(PaymentGatewayConfig)
class PaymentGatewayConfigAdmin(ModelAdmin):
    form = AlipaySettingsForm
    list_display = ('gateway', 'merchant_email', 'is_active', 'is_test_mode', 'verification_status', 'last_verified')
    list_filter = ('is_active', 'is_test_mode', 'verification_status')
    fieldsets = (
        (None, {'fields': ('merchant_email', 'merchant_uid', 'signature_key', 'currency')}),
        ('Mode', {'fields': ('is_test_mode',)}),
    )


@admin.register(GatewayTransaction)
class GatewayTransactionAdmin(ModelAdmin):
    list_display = ('transaction_id', 'client_id', 'amount', 'currency', 'status', 'source', 'verified', 'created_at')
    list_filter = ('status', 'source', 'verified', 'currency')
    search_fields = ('transaction_id', 'client_id')
    readonly_fields = ('created_at', 'updated_at')


@admin.register(GatewayLog)
class GatewayLogAdmin(ModelAdmin):
    list_display = ('created_at', 'direction', 'url', 'success')
    list_filter = ('direction', 'success')
    search_fields = ('url', 'data')
    readonly_fields = ('gateway_config', 'url', 'direction', 'success', 'data', 'created_at')
