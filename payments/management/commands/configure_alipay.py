"""
Management command to configure the Alipay payment gateway.

Usage:
    python manage.py configure_alipay --merchant-email merchant@example.com \
        --merchant-uid 2088XXXXXXXXXXXX --signature-key KEY [--sandbox] [--currency USD]
"""

from django.core.management.base import BaseCommand, CommandError

from payments.forms import AlipaySettingsForm
from payments.models import PaymentGatewayConfig


class Command(BaseCommand):
    help = 'Create or update the Alipay payment gateway configuration'

    def add_arguments(self, parser):
        parser.add_argument('--merchant-email', required=True)
        parser.add_argument('--merchant-uid', required=True)
        parser.add_argument('--signature-key', required=True)
        parser.add_argument('--currency', default='')
        parser.add_argument(
            '--sandbox',
            action='store_true',
            help='Post transactions to the Alipay Sandbox environment'
        )

    def handle(self, *args, **options):
        config = PaymentGatewayConfig.objects.filter(gateway='ALIPAY').first()
        created = config is None

        data = {
            'merchant_email': options['merchant_email'],
            'merchant_uid': options['merchant_uid'],
            'signature_key': options['signature_key'],
            'currency': options['currency'],
        }
        if options['sandbox']:
            data['is_test_mode'] = 'on'

        form = AlipaySettingsForm(data, instance=config)
        if not form.is_valid():
            for field, errors in form.errors.items():
                for error in errors:
                    self.stderr.write(self.style.ERROR(f'  {field}: {error}'))
            raise CommandError('Alipay configuration is invalid.')

        config = form.save(commit=False)
        config.verification_status = 'PENDING'
        config.save()

        if created:
            self.stdout.write(self.style.SUCCESS('Created: Alipay'))
        else:
            self.stdout.write(self.style.WARNING('Updated: Alipay'))

        mode = 'sandbox' if config.is_test_mode else 'production'
        self.stdout.write(self.style.SUCCESS(f'Done! Alipay is configured for {mode}.'))
