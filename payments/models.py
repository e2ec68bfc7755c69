from django.db import models
from encrypted_model_fields.fields import EncryptedCharField  # pip install django-encrypted-model-fields

from .gateways.base import TRANSACTION_STATUSES, STATUS_ERROR


class PaymentGatewayConfig(models.Model):
    """Store the merchant's payment gateway credentials"""
    GATEWAY_CHOICES = [
        ('ALIPAY', 'Alipay'),
    ]

    gateway = models.CharField(max_length=50, choices=GATEWAY_CHOICES, unique=True, default='ALIPAY')

    merchant_email = models.EmailField(max_length=254, help_text="Email of the merchant account")

    # Encrypted credentials
    merchant_uid = EncryptedCharField(max_length=200, help_text="Merchant UID/PID, 16 digits beginning with 2088")
    signature_key = EncryptedCharField(max_length=500, help_text="MD5 signature key")

    # Settings
    is_active = models.BooleanField(default=True)
    is_test_mode = models.BooleanField(
        default=False,
        help_text="Post transactions to the sandbox environment"
    )
    currency = models.CharField(max_length=3, blank=True, help_text="Default settlement currency (ISO 4217)")

    last_verified = models.DateTimeField(null=True, blank=True)
    verification_status = models.CharField(
        max_length=20,
        choices=[
            ('PENDING', 'Pending Verification'),
            ('VERIFIED', 'Verified'),
            ('FAILED', 'Verification Failed'),
        ],
        default='PENDING'
    )
    verification_error = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['gateway']

    def __str__(self):
        return f"{self.get_gateway_display()} - {'Active' if self.is_active else 'Inactive'}"

    def get_credentials(self):
        """Return decrypted credentials as dict"""
        return {
            'merchant_email': self.merchant_email,
            'merchant_uid': self.merchant_uid,
            'signature_key': self.signature_key,
            'is_test_mode': self.is_test_mode,
        }


class GatewayTransaction(models.Model):
    """Transactions reported back by a gateway"""
    SOURCE_CHOICES = [
        ('NOTIFY', 'Notification'),
        ('RETURN', 'Return Redirect'),
    ]

    gateway_config = models.ForeignKey(
        PaymentGatewayConfig,
        on_delete=models.PROTECT,
        related_name='transactions'
    )
    client_id = models.CharField(max_length=100)
    amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    currency = models.CharField(max_length=3, blank=True)
    status = models.CharField(
        max_length=20,
        choices=[(status, status.title()) for status in TRANSACTION_STATUSES],
        default=STATUS_ERROR
    )
    transaction_id = models.CharField(max_length=200, blank=True)
    reference_id = models.CharField(max_length=200, blank=True)
    invoices = models.JSONField(default=list, blank=True)
    source = models.CharField(max_length=10, choices=SOURCE_CHOICES)
    verified = models.BooleanField(default=False, help_text="Confirmed with the gateway")
    callback_data = models.JSONField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['gateway_config', 'transaction_id'], name='gwtx_config_txid_idx'),
        ]

    def __str__(self):
        return f"{self.transaction_id or 'untracked'} - {self.client_id} ({self.status})"


class GatewayLog(models.Model):
    """Audit trail of every exchange with a gateway"""
    DIRECTION_CHOICES = [
        ('input', 'Input'),
        ('output', 'Output'),
    ]

    gateway_config = models.ForeignKey(
        PaymentGatewayConfig,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='logs'
    )
    url = models.CharField(max_length=500, blank=True)
    direction = models.CharField(max_length=10, choices=DIRECTION_CHOICES)
    success = models.BooleanField(default=False)
    data = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.direction} {self.url} ({'success' if self.success else 'failure'})"
