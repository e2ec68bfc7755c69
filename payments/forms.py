from django import forms
from django.utils.translation import gettext_lazy as _

from .models import PaymentGatewayConfig


class AlipaySettingsForm(forms.ModelForm):
    """Form for configuring the Alipay gateway."""

    merchant_email = forms.CharField(
        label=_("Merchant Email"),
        required=False,
        widget=forms.EmailInput(attrs={
            'class': 'input input-bordered w-full',
            'placeholder': 'merchant@example.com'
        })
    )
    merchant_uid = forms.CharField(
        label=_("Merchant UID/PID"),
        required=False,
        widget=forms.TextInput(attrs={
            'class': 'input input-bordered w-full',
            'placeholder': '2088...'
        })
    )
    signature_key = forms.CharField(
        label=_("Signature Key"),
        required=False,
        widget=forms.PasswordInput(attrs={
            'class': 'input input-bordered w-full',
            'autocomplete': 'off'
        }, render_value=True)
    )

    class Meta:
        model = PaymentGatewayConfig
        fields = [
            'merchant_email', 'merchant_uid', 'signature_key',
            'is_test_mode', 'currency'
        ]
        labels = {
            'is_test_mode': _("Developer Mode"),
        }
        help_texts = {
            'is_test_mode': _(
                "Enabling this option will post transactions to the Alipay Sandbox environment. "
                "Only enable this option if you are testing with a Alipay Sandbox account."
            ),
        }
        widgets = {
            'is_test_mode': forms.CheckboxInput(attrs={
                'class': 'toggle toggle-warning'
            }),
            'currency': forms.TextInput(attrs={
                'class': 'input input-bordered w-full',
                'placeholder': 'USD',
                'maxlength': 3
            }),
        }

    def clean_merchant_email(self):
        value = (self.cleaned_data.get('merchant_email') or '').strip()
        try:
            forms.EmailField().clean(value)
        except forms.ValidationError:
            raise forms.ValidationError(_("You must enter a valid email address."))
        return value

    def clean_merchant_uid(self):
        value = (self.cleaned_data.get('merchant_uid') or '').strip()
        if not value:
            raise forms.ValidationError(_("You must enter a valid Merchant UID/PID."))
        return value

    def clean_signature_key(self):
        value = (self.cleaned_data.get('signature_key') or '').strip()
        if not value:
            raise forms.ValidationError(_("You must enter a valid signature key."))
        return value

    def clean_currency(self):
        return (self.cleaned_data.get('currency') or '').strip().upper()
