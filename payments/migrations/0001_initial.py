import django.db.models.deletion
import encrypted_model_fields.fields
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='PaymentGatewayConfig',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('gateway', models.CharField(choices=[('ALIPAY', 'Alipay')], default='ALIPAY', max_length=50, unique=True)),
                ('merchant_email', models.EmailField(help_text='Email of the merchant account', max_length=254)),
                ('merchant_uid', encrypted_model_fields.fields.EncryptedCharField(help_text='Merchant UID/PID, 16 digits beginning with 2088', max_length=200)),
                ('signature_key', encrypted_model_fields.fields.EncryptedCharField(help_text='MD5 signature key', max_length=500)),
                ('is_active', models.BooleanField(default=True)),
                ('is_test_mode', models.BooleanField(default=False, help_text='Post transactions to the sandbox environment')),
                ('currency', models.CharField(blank=True, help_text='Default settlement currency (ISO 4217)', max_length=3)),
                ('last_verified', models.DateTimeField(blank=True, null=True)),
                ('verification_status', models.CharField(choices=[('PENDING', 'Pending Verification'), ('VERIFIED', 'Verified'), ('FAILED', 'Verification Failed')], default='PENDING', max_length=20)),
                ('verification_error', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ['gateway'],
            },
        ),
        migrations.CreateModel(
            name='GatewayTransaction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('client_id', models.CharField(max_length=100)),
                ('amount', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ('currency', models.CharField(blank=True, max_length=3)),
                ('status', models.CharField(choices=[('approved', 'Approved'), ('declined', 'Declined'), ('void', 'Void'), ('pending', 'Pending'), ('reconciled', 'Reconciled'), ('refunded', 'Refunded'), ('returned', 'Returned'), ('error', 'Error')], default='error', max_length=20)),
                ('transaction_id', models.CharField(blank=True, max_length=200)),
                ('reference_id', models.CharField(blank=True, max_length=200)),
                ('invoices', models.JSONField(blank=True, default=list)),
                ('source', models.CharField(choices=[('NOTIFY', 'Notification'), ('RETURN', 'Return Redirect')], max_length=10)),
                ('verified', models.BooleanField(default=False, help_text='Confirmed with the gateway')),
                ('callback_data', models.JSONField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('gateway_config', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='transactions', to='payments.paymentgatewayconfig')),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['gateway_config', 'transaction_id'], name='gwtx_config_txid_idx')],
            },
        ),
        migrations.CreateModel(
            name='GatewayLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('url', models.CharField(blank=True, max_length=500)),
                ('direction', models.CharField(choices=[('input', 'Input'), ('output', 'Output')], max_length=10)),
                ('success', models.BooleanField(default=False)),
                ('data', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('gateway_config', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='logs', to='payments.paymentgatewayconfig')),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
    ]
