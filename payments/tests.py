import hashlib
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from io import StringIO
from unittest.mock import MagicMock, patch

import requests
from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import connection
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from requests.structures import CaseInsensitiveDict

from payments.forms import AlipaySettingsForm
from payments.gateways import get_gateway_adapter
from payments.gateways.alipay import (
    AlipayAdapter, build_order_id, format_amount, map_trade_status, parse_order_id,
)
from payments.gateways.alipay_client import (
    AlipayApiError, AlipayClient, Credentials, EmptyResult, PlainResult, XmlResult,
    GENERIC_ERROR_MESSAGE, PRODUCTION_URL, SANDBOX_URL, build_signature, error_message,
)
from payments.gateways.base import serialize_invoices, unserialize_invoices
from payments.models import GatewayLog, GatewayTransaction, PaymentGatewayConfig

User = get_user_model()

REQUESTS_GET = 'payments.gateways.alipay_client.requests.get'
SIGN_KEY = 'test-signature-key'


def make_response(body='', content_type='text/plain', status_code=200, headers=None):
    """Build a stand-in for a requests.Response."""
    response = MagicMock()
    response.text = body
    response.status_code = status_code
    response.headers = CaseInsensitiveDict({'Content-Type': content_type, **(headers or {})})
    return response


def redirect_response(location='https://intlmapi.alipay.com/cashier?token=abc'):
    return make_response('', content_type='text/html', status_code=302, headers={'Location': location})


def xml_response(inner):
    return make_response(
        f'<?xml version="1.0" encoding="GBK"?>\n<alipay>{inner}</alipay>',
        content_type='text/xml; charset=GBK'
    )


class SignatureTests(SimpleTestCase):
    """Tests for request signing."""

    def test_known_digest(self):
        params = {'b': '2', 'a': '1'}
        expected = hashlib.md5(b'a=1&b=2' + SIGN_KEY.encode()).hexdigest()
        self.assertEqual(build_signature(params, SIGN_KEY), expected)

    def test_sign_and_sign_type_are_excluded(self):
        params = {'a': '1', 'b': '2'}
        with_extras = {**params, 'sign': 'stale', 'sign_type': 'MD5'}
        self.assertEqual(build_signature(with_extras, SIGN_KEY), build_signature(params, SIGN_KEY))

    def test_order_of_keys_does_not_matter(self):
        first = {'service': 'create_forex_trade', 'currency': 'USD', 'total_fee': '10.00', 'partner': '2088'}
        second = dict(reversed(list(first.items())))
        self.assertEqual(build_signature(first, SIGN_KEY), build_signature(second, SIGN_KEY))

    def test_values_are_signed_unescaped(self):
        params = {'subject': 'Order 1', 'supplier': 'Acme & Co', 'notify_url': 'https://example.com/a?b=c'}
        payload = 'notify_url=https://example.com/a?b=c&subject=Order 1&supplier=Acme & Co'
        expected = hashlib.md5((payload + SIGN_KEY).encode('utf-8')).hexdigest()
        self.assertEqual(build_signature(params, SIGN_KEY), expected)


class ErrorMessageTests(SimpleTestCase):
    """Tests for the gateway error table."""

    def test_known_codes(self):
        self.assertEqual(error_message('ILLEGAL_SIGN'), 'Illegal signature')
        self.assertEqual(error_message('RETURN_AMOUNT_EXCEED'), 'Refund amount is over the payment amount')

    def test_unknown_code_falls_back(self):
        self.assertEqual(error_message('ILLEGAL_SOMETHING_NEW'), GENERIC_ERROR_MESSAGE)
        self.assertEqual(error_message(None), GENERIC_ERROR_MESSAGE)


class AlipayClientTests(SimpleTestCase):
    """Tests for the Alipay API client."""

    def setUp(self):
        self.client_api = AlipayClient(Credentials('2088101122136241', SIGN_KEY, sandbox=False))

    def _payment_fields(self, **overrides):
        fields = {
            'subject': 'Invoice payment',
            'out_trade_no': '42@7=10.00',
            'currency': 'USD',
            'total_fee': '10.00',
            'supplier': 'Acme',
            'notify_url': 'https://example.com/payments/alipay/notify/',
            'return_url': 'https://example.com/payments/alipay/return/',
        }
        fields.update(overrides)
        return fields

    @patch(REQUESTS_GET)
    def test_request_adds_protocol_fields_and_signature(self, mock_get):
        mock_get.return_value = redirect_response()

        result = self.client_api.request_payment(self._payment_fields())

        params = mock_get.call_args.kwargs['params']
        self.assertEqual(params['_input_charset'], 'UTF-8')
        self.assertEqual(params['service'], 'create_forex_trade')
        self.assertEqual(params['partner'], '2088101122136241')
        self.assertEqual(params['sign_type'], 'MD5')
        self.assertEqual(params['sign'], build_signature(params, SIGN_KEY))
        self.assertEqual(result.params, params)
        self.assertEqual(result.url, PRODUCTION_URL)

    @patch(REQUESTS_GET)
    def test_request_options(self, mock_get):
        mock_get.return_value = redirect_response()

        self.client_api.request_payment(self._payment_fields())

        args, kwargs = mock_get.call_args
        self.assertEqual(args[0], PRODUCTION_URL)
        self.assertEqual(kwargs['timeout'], 20)
        self.assertFalse(kwargs['allow_redirects'])
        # Certificate verification stays at the requests default
        self.assertNotIn('verify', kwargs)

    @patch(REQUESTS_GET)
    def test_sandbox_url(self, mock_get):
        mock_get.return_value = redirect_response()
        sandbox = AlipayClient(Credentials('2088101122136241', SIGN_KEY, sandbox=True))

        result = sandbox.request_payment(self._payment_fields())

        self.assertEqual(result.url, SANDBOX_URL)
        self.assertEqual(mock_get.call_args.args[0], SANDBOX_URL)

    @patch(REQUESTS_GET)
    def test_zero_decimal_currencies_are_rounded(self, mock_get):
        mock_get.return_value = redirect_response()

        self.client_api.request_payment(self._payment_fields(currency='KRW', total_fee='1000.50'))
        self.assertEqual(mock_get.call_args.kwargs['params']['total_fee'], '1001')

        self.client_api.request_payment(self._payment_fields(currency='JPY', total_fee='99.40'))
        self.assertEqual(mock_get.call_args.kwargs['params']['total_fee'], '99')

    @patch(REQUESTS_GET)
    def test_other_currencies_keep_two_decimals(self, mock_get):
        mock_get.return_value = redirect_response()

        self.client_api.request_payment(self._payment_fields(currency='USD', total_fee='10.50'))

        self.assertEqual(mock_get.call_args.kwargs['params']['total_fee'], '10.50')

    @patch(REQUESTS_GET)
    def test_headers_are_lower_cased(self, mock_get):
        mock_get.return_value = redirect_response('https://intlmapi.alipay.com/cashier')

        result = self.client_api.request_payment(self._payment_fields())

        self.assertEqual(result.headers['location'], 'https://intlmapi.alipay.com/cashier')
        self.assertIsInstance(result.response, EmptyResult)

    @patch(REQUESTS_GET)
    def test_unset_optional_fields_are_not_sent(self, mock_get):
        mock_get.return_value = redirect_response()

        self.client_api.request_payment(self._payment_fields(return_url=None))
        params = mock_get.call_args.kwargs['params']

        fields = self._payment_fields()
        del fields['return_url']
        self.client_api.request_payment(fields)

        self.assertNotIn('return_url', params)
        self.assertEqual(params['sign'], build_signature(params, SIGN_KEY))
        self.assertEqual(params['sign'], mock_get.call_args.kwargs['params']['sign'])

    @patch(REQUESTS_GET)
    def test_illegal_sign_raises(self, mock_get):
        mock_get.return_value = make_response(
            '<html><body>Error: ILLEGAL_SIGN\n</body></html>', content_type='text/html'
        )

        with self.assertRaises(AlipayApiError) as ctx:
            self.client_api.request_payment(self._payment_fields())

        self.assertEqual(str(ctx.exception), 'Illegal signature')
        self.assertEqual(ctx.exception.code, 'ILLEGAL_SIGN')

    @patch(REQUESTS_GET)
    def test_illegal_token_inside_xml(self, mock_get):
        mock_get.return_value = xml_response('<is_success>F</is_success><error>ILLEGAL_PARTNER</error>')

        with self.assertRaises(AlipayApiError) as ctx:
            self.client_api.verify_notification('abc')

        self.assertEqual(ctx.exception.message, 'Incorrect Partner ID')

    @patch(REQUESTS_GET)
    def test_unknown_illegal_token_uses_generic_message(self, mock_get):
        mock_get.return_value = make_response('ILLEGAL_NEW_THING', content_type='text/html')

        with self.assertRaises(AlipayApiError) as ctx:
            self.client_api.request_payment(self._payment_fields())

        self.assertEqual(ctx.exception.message, GENERIC_ERROR_MESSAGE)

    @patch(REQUESTS_GET)
    def test_xml_success_flag(self, mock_get):
        mock_get.return_value = xml_response('<is_success>T</is_success>')
        result = self.client_api.request_refund({
            'out_return_no': 'R1', 'out_trade_no': '42@7=10.00',
            'return_amount': '10.00', 'currency': 'USD', 'reason': 'Out of supply',
        })
        self.assertIsInstance(result.response, XmlResult)
        self.assertIs(result.response.is_success, True)

        mock_get.return_value = xml_response('<is_success>F</is_success>')
        result = self.client_api.request_refund({
            'out_return_no': 'R1', 'out_trade_no': '42@7=10.00',
            'return_amount': '10.00', 'currency': 'USD', 'reason': 'Out of supply',
        })
        self.assertIs(result.response.is_success, False)

    @patch(REQUESTS_GET)
    def test_xml_error_is_resolved(self, mock_get):
        mock_get.return_value = xml_response(
            '<is_success>F</is_success><error>PURCHASE_TRADE_NOT_EXIST</error>'
        )

        result = self.client_api.request_refund({
            'out_return_no': 'R2', 'out_trade_no': '42@7=10.00',
            'return_amount': '10.00', 'currency': 'USD', 'reason': 'Duplicate',
        })

        self.assertEqual(result.response.error, 'PURCHASE_TRADE_NOT_EXIST')
        self.assertEqual(result.response.error_msg, 'The payment transaction does not exist')

    @patch(REQUESTS_GET)
    def test_xml_unknown_error_code(self, mock_get):
        mock_get.return_value = xml_response('<is_success>F</is_success><error>SYSTEM_ERROR</error>')

        result = self.client_api.verify_notification('abc')

        self.assertFalse(result)

    @patch(REQUESTS_GET)
    def test_xml_scan_keeps_unknown_tags(self, mock_get):
        mock_get.return_value = xml_response(
            '<is_success>T</is_success><request><param name="service">x</param></request>'
            '<sign_type>MD5</sign_type>'
        )

        result = self.client_api.request_payment(self._payment_fields())

        self.assertEqual(result.response.get('sign_type'), 'MD5')
        self.assertIs(result.response.get('is_success'), True)

    @patch(REQUESTS_GET)
    def test_plain_text_after_marker(self, mock_get):
        mock_get.return_value = make_response('Path=/; secure;\n  true \n')

        result = self.client_api.request_payment(self._payment_fields())

        self.assertEqual(result.response, PlainResult('true'))

    @patch(REQUESTS_GET)
    def test_plain_text_without_marker(self, mock_get):
        mock_get.return_value = make_response(' false\n', content_type='text/plain; charset=GBK')

        result = self.client_api.request_payment(self._payment_fields())

        self.assertEqual(result.response, PlainResult('false'))

    @patch(REQUESTS_GET)
    def test_other_content_type_is_empty(self, mock_get):
        mock_get.return_value = make_response('{"a": 1}', content_type='application/json')

        result = self.client_api.request_payment(self._payment_fields())

        self.assertIsInstance(result.response, EmptyResult)

    @patch(REQUESTS_GET)
    def test_transport_error_is_wrapped(self, mock_get):
        mock_get.side_effect = requests.exceptions.Timeout('timed out')

        with self.assertRaises(AlipayApiError) as ctx:
            self.client_api.request_payment(self._payment_fields())

        self.assertEqual(ctx.exception.message, GENERIC_ERROR_MESSAGE)
        self.assertIsInstance(ctx.exception.__cause__, requests.exceptions.Timeout)

    @patch('payments.gateways.alipay_client.timezone.now')
    @patch(REQUESTS_GET)
    def test_refund_stamps_hong_kong_time(self, mock_get, mock_now):
        mock_now.return_value = datetime(2024, 1, 1, 0, 0, 0, tzinfo=dt_timezone.utc)
        mock_get.return_value = xml_response('<is_success>T</is_success>')

        self.client_api.request_refund({
            'out_return_no': 'R3', 'out_trade_no': '42@7=1000',
            'return_amount': '1000.6', 'currency': 'JPY', 'reason': 'Cancelled',
        })

        params = mock_get.call_args.kwargs['params']
        self.assertEqual(params['service'], 'forex_refund')
        self.assertEqual(params['gmt_return'], '20240101080000')
        self.assertEqual(params['return_amount'], '1001')

    @patch(REQUESTS_GET)
    def test_verify_notification(self, mock_get):
        mock_get.return_value = make_response('true')
        self.assertTrue(self.client_api.verify_notification('notify-1'))
        params = mock_get.call_args.kwargs['params']
        self.assertEqual(params['service'], 'notify_verify')
        self.assertEqual(params['notify_id'], 'notify-1')

        mock_get.return_value = make_response('false')
        self.assertFalse(self.client_api.verify_notification('notify-1'))


class InvoiceSerializationTests(SimpleTestCase):
    """Tests for invoice allocation strings."""

    def test_serialize(self):
        invoices = [{'id': 12, 'amount': '10.00'}, {'id': 13, 'amount': '5.50'}]
        self.assertEqual(serialize_invoices(invoices), '12=10.00|13=5.50')

    def test_unserialize(self):
        self.assertEqual(
            unserialize_invoices('12=10.00|13=5.50'),
            [{'id': '12', 'amount': '10.00'}, {'id': '13', 'amount': '5.50'}]
        )

    def test_unserialize_skips_malformed_pairs(self):
        self.assertEqual(unserialize_invoices('12=10.00|junk|'), [{'id': '12', 'amount': '10.00'}])

    def test_unserialize_empty(self):
        self.assertEqual(unserialize_invoices(None), [])
        self.assertEqual(unserialize_invoices(''), [])


class OrderIdTests(SimpleTestCase):
    """Tests for the compound out_trade_no."""

    def test_parse_with_invoices(self):
        self.assertEqual(parse_order_id('42@7=10.00'), ('42', '7=10.00'))

    def test_parse_numeric_suffix_means_no_invoices(self):
        self.assertEqual(parse_order_id('42@1699999999'), ('42', None))

    def test_parse_without_separator(self):
        self.assertEqual(parse_order_id('42'), ('42', None))
        self.assertEqual(parse_order_id(None), ('', None))

    def test_build_with_invoices(self):
        self.assertEqual(build_order_id(42, '7=10.00'), '42@7=10.00')

    @patch('payments.gateways.alipay.time.time', return_value=1699999999.7)
    def test_build_without_invoices_uses_timestamp(self, mock_time):
        self.assertEqual(build_order_id(42), '42@1699999999')

    def test_format_amount(self):
        self.assertEqual(format_amount(15.5), '15.50')
        self.assertEqual(format_amount('10'), '10.00')
        self.assertEqual(format_amount(Decimal('2.345')), '2.35')


class TradeStatusTests(SimpleTestCase):
    """Tests for the trade status mapping."""

    def test_known_statuses(self):
        self.assertEqual(map_trade_status('TRADE_FINISHED'), 'approved')
        self.assertEqual(map_trade_status('TRADE_REFUSE'), 'declined')
        self.assertEqual(map_trade_status('TRADE_CANCEL'), 'void')
        self.assertEqual(map_trade_status('TRADE_PENDING'), 'pending')

    def test_unknown_statuses(self):
        for status in ('TRADE_SUCCESS', 'trade_finished', '', None):
            self.assertEqual(map_trade_status(status), 'error')


class GatewayTestBase(TestCase):
    """Base class with a configured Alipay gateway."""

    def setUp(self):
        self.config = PaymentGatewayConfig.objects.create(
            merchant_email='merchant@example.com',
            merchant_uid='2088101122136241',
            signature_key=SIGN_KEY,
            is_test_mode=True,
            currency='USD',
        )

    def make_adapter(self):
        return AlipayAdapter(
            self.config,
            request_path='/payments/checkout/',
            company_name='Acme Hosting',
            notify_url='https://billing.example.com/payments/alipay/notify/',
        )

    def notification(self, **overrides):
        data = {
            'out_trade_no': '42@7=10.00|8=5.50',
            'trade_status': 'TRADE_FINISHED',
            'notify_id': 'notify-123',
            'trade_no': '2024010122001',
            'total_fee': '15.50',
            'currency': 'USD',
        }
        data.update(overrides)
        return data


class PaymentGatewayConfigTests(GatewayTestBase):
    """Tests for the gateway configuration model."""

    def test_credentials_are_encrypted_at_rest(self):
        with connection.cursor() as cursor:
            cursor.execute(
                'SELECT merchant_uid, signature_key FROM payments_paymentgatewayconfig WHERE id = %s',
                [self.config.pk]
            )
            merchant_uid, signature_key = cursor.fetchone()

        self.assertNotEqual(merchant_uid, '2088101122136241')
        self.assertNotEqual(signature_key, SIGN_KEY)

        config = PaymentGatewayConfig.objects.get(pk=self.config.pk)
        self.assertEqual(config.get_credentials()['signature_key'], SIGN_KEY)

    def test_factory_returns_alipay_adapter(self):
        adapter = get_gateway_adapter(self.config)
        self.assertIsInstance(adapter, AlipayAdapter)
        self.assertEqual(adapter.client.url, SANDBOX_URL)

    def test_factory_rejects_unknown_gateway(self):
        self.config.gateway = 'UNKNOWN'
        with self.assertRaises(ValueError):
            get_gateway_adapter(self.config)

    def test_str(self):
        self.assertEqual(str(self.config), 'Alipay - Active')


class AlipayAdapterTests(GatewayTestBase):
    """Tests for the Alipay gateway adapter."""

    @patch(REQUESTS_GET)
    def test_build_process_renders_redirect_form(self, mock_get):
        mock_get.return_value = redirect_response()
        adapter = self.make_adapter()

        html = adapter.build_process(
            {'client_id': 42},
            15.5,
            [{'id': 7, 'amount': '10.00'}, {'id': 8, 'amount': '5.50'}],
            {'description': 'Invoice #7, #8', 'return_url': 'https://billing.example.com/return/'}
        )

        params = mock_get.call_args.kwargs['params']
        self.assertEqual(params['out_trade_no'], '42@7=10.00|8=5.50')
        self.assertEqual(params['total_fee'], '15.50')
        self.assertEqual(params['currency'], 'USD')
        self.assertEqual(params['supplier'], 'Acme Hosting')
        self.assertEqual(params['notify_url'], 'https://billing.example.com/payments/alipay/notify/')

        self.assertIn(f'action="{SANDBOX_URL}"', html)
        self.assertIn('value="42@7=10.00|8=5.50"', html)
        self.assertIn(f'value="{params["sign"]}"', html)
        self.assertEqual(html.count('name="sign"'), 1)
        self.assertEqual(adapter.errors(), {})

    @patch(REQUESTS_GET)
    def test_build_process_logs_input_and_output(self, mock_get):
        mock_get.return_value = redirect_response()

        self.make_adapter().build_process({'client_id': 42}, '10', None, {})

        logs = GatewayLog.objects.order_by('created_at', 'pk')
        self.assertEqual([log.direction for log in logs], ['input', 'output'])
        self.assertTrue(all(log.success for log in logs))
        self.assertTrue(all(log.url == '/payments/checkout/' for log in logs))
        self.assertNotIn(SIGN_KEY, ''.join(log.data for log in logs))

    @patch('payments.gateways.alipay.time.time', return_value=1700000000)
    @patch(REQUESTS_GET)
    def test_build_process_without_invoices(self, mock_get, mock_time):
        mock_get.return_value = redirect_response()

        self.make_adapter().build_process({'client_id': 42}, '10', None)

        self.assertEqual(mock_get.call_args.kwargs['params']['out_trade_no'], '42@1700000000')

    @patch(REQUESTS_GET)
    def test_build_process_uses_selected_currency(self, mock_get):
        mock_get.return_value = redirect_response()
        adapter = self.make_adapter()
        adapter.set_currency('JPY')

        adapter.build_process({'client_id': 42}, '1000.50', [{'id': 1, 'amount': '1000.50'}])

        params = mock_get.call_args.kwargs['params']
        self.assertEqual(params['currency'], 'JPY')
        self.assertEqual(params['total_fee'], '1001')

    @patch(REQUESTS_GET)
    def test_build_process_without_redirect_returns_none(self, mock_get):
        mock_get.return_value = make_response('<html>busy</html>', content_type='text/html')
        adapter = self.make_adapter()

        self.assertIsNone(adapter.build_process({'client_id': 42}, '10', None))

        output = GatewayLog.objects.get(direction='output')
        self.assertFalse(output.success)

    @patch(REQUESTS_GET)
    def test_build_process_without_options_omits_optional_fields(self, mock_get):
        mock_get.return_value = redirect_response()

        self.make_adapter().build_process({'client_id': 42}, '10', None)

        params = mock_get.call_args.kwargs['params']
        self.assertNotIn('subject', params)
        self.assertNotIn('return_url', params)
        self.assertEqual(params['sign'], build_signature(params, SIGN_KEY))

    @patch(REQUESTS_GET)
    def test_build_process_records_gateway_error(self, mock_get):
        mock_get.return_value = make_response('ILLEGAL_SIGN', content_type='text/html')
        adapter = self.make_adapter()

        self.assertIsNone(adapter.build_process({'client_id': 42}, '10', None))
        self.assertEqual(adapter.errors(), {'internal': {'response': 'Illegal signature'}})

    @patch(REQUESTS_GET)
    def test_validate_trusted_notification(self, mock_get):
        mock_get.return_value = make_response('true')

        record = self.make_adapter().validate({}, self.notification())

        params = mock_get.call_args.kwargs['params']
        self.assertEqual(params['service'], 'notify_verify')
        self.assertEqual(params['notify_id'], 'notify-123')
        self.assertEqual(record.status, 'approved')
        self.assertEqual(record.acknowledgment, 'Success')
        self.assertEqual(record.client_id, '42')
        self.assertEqual(record.amount, '15.50')
        self.assertEqual(record.currency, 'USD')
        self.assertEqual(record.transaction_id, '2024010122001')
        self.assertIsNone(record.reference_id)
        self.assertEqual(record.invoices, [
            {'id': '7', 'amount': '10.00'},
            {'id': '8', 'amount': '5.50'},
        ])

    @patch(REQUESTS_GET)
    def test_validate_untrusted_notification(self, mock_get):
        mock_get.return_value = make_response('false')

        record = self.make_adapter().validate({}, self.notification())

        self.assertEqual(record.status, 'error')
        self.assertIsNone(record.acknowledgment)
        self.assertFalse(GatewayLog.objects.get().success)

    @patch(REQUESTS_GET)
    def test_validate_unknown_trade_status(self, mock_get):
        mock_get.return_value = make_response('true')

        record = self.make_adapter().validate({}, self.notification(trade_status='WAIT_BUYER_PAY'))

        self.assertEqual(record.status, 'error')
        self.assertEqual(record.acknowledgment, 'Success')

    @patch(REQUESTS_GET)
    def test_validate_when_verification_fails(self, mock_get):
        mock_get.return_value = make_response('ILLEGAL_PARTNER', content_type='text/html')
        adapter = self.make_adapter()

        record = adapter.validate({}, self.notification())

        self.assertEqual(record.status, 'error')
        self.assertIsNone(record.acknowledgment)
        self.assertEqual(adapter.errors()['internal']['response'], 'Incorrect Partner ID')

    @patch(REQUESTS_GET)
    def test_success_does_not_call_gateway(self, mock_get):
        record = self.make_adapter().success(
            self.notification(out_trade_no='42@1699999999', trade_status='TRADE_PENDING'), {}
        )

        mock_get.assert_not_called()
        self.assertEqual(record.status, 'pending')
        self.assertEqual(record.client_id, '42')
        self.assertEqual(record.invoices, [])
        self.assertIsNone(record.acknowledgment)

    @patch(REQUESTS_GET)
    def test_success_maps_statuses(self, mock_get):
        adapter = self.make_adapter()
        for trade_status, status in (
            ('TRADE_FINISHED', 'approved'),
            ('TRADE_REFUSE', 'declined'),
            ('TRADE_CANCEL', 'void'),
            ('TRADE_PENDING', 'pending'),
            ('TRADE_CLOSED', 'error'),
        ):
            record = adapter.success(self.notification(trade_status=trade_status), {})
            self.assertEqual(record.status, status)

    @patch(REQUESTS_GET)
    def test_capture_void_refund_are_unsupported(self, mock_get):
        adapter = self.make_adapter()

        self.assertIsNone(adapter.capture('ref', '2024010122001', '10.00'))
        self.assertIn('unsupported', adapter.errors())

        adapter.clear_errors()
        self.assertIsNone(adapter.void('ref', '2024010122001'))
        self.assertIn('unsupported', adapter.errors())

        adapter.clear_errors()
        self.assertIsNone(adapter.refund('ref', '2024010122001', '10.00', 'notes'))
        self.assertIn('unsupported', adapter.errors())

        mock_get.assert_not_called()

    @patch(REQUESTS_GET)
    def test_verify_credentials(self, mock_get):
        mock_get.return_value = make_response('false')
        self.assertEqual(self.make_adapter().verify_credentials(), (True, 'Credentials verified successfully'))

        mock_get.return_value = make_response('ILLEGAL_SIGN', content_type='text/html')
        self.assertEqual(self.make_adapter().verify_credentials(), (False, 'Illegal signature'))

    def test_encryptable_fields(self):
        self.assertEqual(self.make_adapter().encryptable_fields(), ['merchant_uid', 'signature_key'])

    def test_payload_logged_at_debug_in_sandbox(self):
        with self.assertLogs('payments.gateways.base', level='DEBUG') as logs:
            self.make_adapter().log({'notify_id': 'notify-123'}, 'input', True)

        self.assertTrue(any('notify-123' in line for line in logs.output))

    def test_payload_not_logged_in_production(self):
        self.config.is_test_mode = False

        with self.assertLogs('payments.gateways.base', level='DEBUG') as logs:
            self.make_adapter().log({'notify_id': 'notify-123'}, 'input', True)

        self.assertFalse(any('notify-123' in line for line in logs.output))
        self.assertEqual(GatewayLog.objects.get().direction, 'input')


class AlipaySettingsFormTests(TestCase):
    """Tests for the Alipay settings form."""

    def _data(self, **overrides):
        data = {
            'merchant_email': 'merchant@example.com',
            'merchant_uid': '2088101122136241',
            'signature_key': SIGN_KEY,
            'currency': 'usd',
        }
        data.update(overrides)
        return data

    def test_valid(self):
        form = AlipaySettingsForm(self._data())
        self.assertTrue(form.is_valid(), form.errors)
        config = form.save()
        self.assertFalse(config.is_test_mode)
        self.assertEqual(config.currency, 'USD')

    def test_sandbox_checkbox(self):
        form = AlipaySettingsForm(self._data(is_test_mode='on'))
        self.assertTrue(form.is_valid(), form.errors)
        self.assertTrue(form.save().is_test_mode)

    def test_invalid_email(self):
        form = AlipaySettingsForm(self._data(merchant_email='not-an-email'))
        self.assertFalse(form.is_valid())
        self.assertEqual(form.errors['merchant_email'], ['You must enter a valid email address.'])

    def test_missing_email(self):
        form = AlipaySettingsForm(self._data(merchant_email=''))
        self.assertFalse(form.is_valid())
        self.assertEqual(form.errors['merchant_email'], ['You must enter a valid email address.'])

    def test_empty_merchant_uid(self):
        form = AlipaySettingsForm(self._data(merchant_uid='  '))
        self.assertFalse(form.is_valid())
        self.assertEqual(form.errors['merchant_uid'], ['You must enter a valid Merchant UID/PID.'])

    def test_empty_signature_key(self):
        form = AlipaySettingsForm(self._data(signature_key=''))
        self.assertFalse(form.is_valid())
        self.assertEqual(form.errors['signature_key'], ['You must enter a valid signature key.'])


@override_settings(SECURE_SSL_REDIRECT=False)
class NotificationViewTests(GatewayTestBase):
    """Tests for the notification and return endpoints."""

    @patch(REQUESTS_GET)
    def test_trusted_notification_is_acknowledged(self, mock_get):
        mock_get.return_value = make_response('true')

        response = self.client.post(reverse('payments:alipay_notify'), self.notification())

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b'Success')

        transaction = GatewayTransaction.objects.get()
        self.assertEqual(transaction.status, 'approved')
        self.assertEqual(transaction.source, 'NOTIFY')
        self.assertEqual(transaction.amount, Decimal('15.50'))
        self.assertEqual(transaction.client_id, '42')
        self.assertEqual(len(transaction.invoices), 2)
        self.assertEqual(transaction.callback_data['notify_id'], 'notify-123')

    @patch(REQUESTS_GET)
    def test_untrusted_notification_is_rejected(self, mock_get):
        mock_get.return_value = make_response('false')

        response = self.client.post(reverse('payments:alipay_notify'), self.notification())

        self.assertEqual(response.status_code, 400)
        self.assertNotEqual(response.content, b'Success')
        self.assertEqual(GatewayTransaction.objects.get().status, 'error')

    @patch(REQUESTS_GET)
    def test_repeated_notification_updates_transaction(self, mock_get):
        mock_get.return_value = make_response('true')

        self.client.post(reverse('payments:alipay_notify'), self.notification(trade_status='TRADE_PENDING'))
        self.client.post(reverse('payments:alipay_notify'), self.notification())

        transaction = GatewayTransaction.objects.get()
        self.assertEqual(transaction.status, 'approved')
        self.assertTrue(transaction.verified)

    @patch(REQUESTS_GET)
    def test_unverified_notification_keeps_verified_transaction(self, mock_get):
        mock_get.return_value = make_response('true')
        self.client.post(reverse('payments:alipay_notify'), self.notification(total_fee='10.00'))

        mock_get.return_value = make_response('false')
        response = self.client.post(
            reverse('payments:alipay_notify'),
            self.notification(trade_status='TRADE_CANCEL', total_fee='0.01')
        )

        self.assertEqual(response.status_code, 400)
        transaction = GatewayTransaction.objects.get()
        self.assertEqual(transaction.status, 'approved')
        self.assertEqual(transaction.amount, Decimal('10.00'))
        self.assertEqual(transaction.callback_data['trade_status'], 'TRADE_FINISHED')

    @patch(REQUESTS_GET)
    def test_return_keeps_verified_transaction(self, mock_get):
        mock_get.return_value = make_response('true')
        self.client.post(reverse('payments:alipay_notify'), self.notification())

        response = self.client.get(
            reverse('payments:alipay_return'),
            self.notification(trade_status='TRADE_CANCEL', total_fee='0.01')
        )

        self.assertEqual(response.status_code, 200)
        transaction = GatewayTransaction.objects.get()
        self.assertEqual(transaction.source, 'NOTIFY')
        self.assertEqual(transaction.status, 'approved')
        self.assertEqual(transaction.amount, Decimal('15.50'))

    @patch(REQUESTS_GET)
    def test_verified_notification_after_return(self, mock_get):
        self.client.get(reverse('payments:alipay_return'), self.notification(trade_status='TRADE_PENDING'))

        mock_get.return_value = make_response('true')
        self.client.post(reverse('payments:alipay_notify'), self.notification())

        self.assertEqual(GatewayTransaction.objects.count(), 2)
        verified = GatewayTransaction.objects.get(verified=True)
        self.assertEqual(verified.source, 'NOTIFY')
        self.assertEqual(verified.status, 'approved')
        self.assertEqual(GatewayTransaction.objects.get(verified=False).status, 'pending')

    def test_notification_requires_post(self):
        response = self.client.get(reverse('payments:alipay_notify'))
        self.assertEqual(response.status_code, 405)

    @patch(REQUESTS_GET)
    def test_return_records_transaction(self, mock_get):
        response = self.client.get(reverse('payments:alipay_return'), self.notification())

        mock_get.assert_not_called()
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, 'Payment received')
        transaction = GatewayTransaction.objects.get()
        self.assertEqual(transaction.source, 'RETURN')
        self.assertEqual(transaction.status, 'approved')

    def test_unconfigured_gateway(self):
        self.config.is_active = False
        self.config.save()

        response = self.client.post(reverse('payments:alipay_notify'), self.notification())

        self.assertEqual(response.status_code, 404)


@override_settings(SECURE_SSL_REDIRECT=False, PAYMENTS_COMPANY_NAME='Acme Hosting')
class CheckoutViewTests(GatewayTestBase):
    """Tests for the checkout endpoint."""

    def setUp(self):
        super().setUp()
        self.user = User.objects.create_user(username='client', password='pass12345')
        self.client.force_login(self.user)

    def _post(self, **overrides):
        data = {
            'client_id': '42',
            'amount': '15.50',
            'description': 'Invoice #7, #8',
            'invoice_id': ['7', '8'],
            'invoice_amount': ['10.00', '5.50'],
        }
        data.update(overrides)
        return self.client.post(reverse('payments:checkout'), data)

    @patch(REQUESTS_GET)
    def test_checkout_returns_redirect_form(self, mock_get):
        mock_get.return_value = redirect_response()

        response = self._post()

        self.assertEqual(response.status_code, 200)
        self.assertContains(response, 'alipay-process')
        params = mock_get.call_args.kwargs['params']
        self.assertEqual(params['out_trade_no'], '42@7=10.00|8=5.50')
        self.assertEqual(params['supplier'], 'Acme Hosting')
        self.assertEqual(params['currency'], 'USD')
        self.assertEqual(params['notify_url'], 'http://testserver/payments/alipay/notify/')
        self.assertEqual(params['return_url'], 'http://testserver/payments/alipay/return/')

    @patch(REQUESTS_GET)
    def test_checkout_shows_gateway_error(self, mock_get):
        mock_get.return_value = make_response('ILLEGAL_SIGN', content_type='text/html')

        response = self._post()

        self.assertContains(response, 'Illegal signature', status_code=502)

    def test_checkout_validates_input(self):
        response = self._post(amount='abc')
        self.assertEqual(response.status_code, 400)

    def test_checkout_requires_login(self):
        self.client.logout()
        response = self._post()
        self.assertEqual(response.status_code, 302)
        self.assertIn('/admin/login/', response['Location'])


@override_settings(SECURE_SSL_REDIRECT=False)
class GatewaySettingsViewTests(TestCase):
    """Tests for the gateway settings pages."""

    def setUp(self):
        self.admin = User.objects.create_user(username='admin', password='pass12345', is_staff=True)

    def test_requires_staff(self):
        user = User.objects.create_user(username='client', password='pass12345')
        self.client.force_login(user)
        response = self.client.get(reverse('payments:gateway_settings'))
        self.assertEqual(response.status_code, 403)

    def test_anonymous_is_sent_to_login(self):
        response = self.client.get(reverse('payments:gateway_settings'))
        self.assertEqual(response.status_code, 302)

    def test_save_settings(self):
        self.client.force_login(self.admin)

        response = self.client.post(reverse('payments:gateway_settings'), {
            'merchant_email': 'merchant@example.com',
            'merchant_uid': '2088101122136241',
            'signature_key': SIGN_KEY,
            'is_test_mode': 'on',
        })

        self.assertRedirects(response, reverse('payments:gateway_settings'))
        config = PaymentGatewayConfig.objects.get()
        self.assertTrue(config.is_test_mode)
        self.assertEqual(config.verification_status, 'PENDING')

    def test_invalid_settings_are_shown(self):
        self.client.force_login(self.admin)

        response = self.client.post(reverse('payments:gateway_settings'), {
            'merchant_email': 'bad',
            'merchant_uid': '',
            'signature_key': '',
        })

        self.assertContains(response, 'You must enter a valid email address.')
        self.assertFalse(PaymentGatewayConfig.objects.exists())

    @patch(REQUESTS_GET)
    def test_verify_credentials(self, mock_get):
        mock_get.return_value = make_response('ILLEGAL_PARTNER', content_type='text/html')
        config = PaymentGatewayConfig.objects.create(
            merchant_email='merchant@example.com',
            merchant_uid='2088000000000000',
            signature_key=SIGN_KEY,
        )
        self.client.force_login(self.admin)

        self.client.post(reverse('payments:gateway_verify'))

        config.refresh_from_db()
        self.assertEqual(config.verification_status, 'FAILED')
        self.assertEqual(config.verification_error, 'Incorrect Partner ID')

        mock_get.return_value = make_response('false')
        self.client.post(reverse('payments:gateway_verify'))

        config.refresh_from_db()
        self.assertEqual(config.verification_status, 'VERIFIED')
        self.assertIsNotNone(config.last_verified)


class ConfigureAlipayCommandTests(TestCase):
    """Tests for the configure_alipay management command."""

    def test_creates_configuration(self):
        call_command(
            'configure_alipay',
            merchant_email='merchant@example.com',
            merchant_uid='2088101122136241',
            signature_key=SIGN_KEY,
            sandbox=True,
            stdout=StringIO(),
        )

        config = PaymentGatewayConfig.objects.get()
        self.assertTrue(config.is_test_mode)
        self.assertEqual(config.get_credentials()['merchant_uid'], '2088101122136241')

    def test_rejects_invalid_settings(self):
        with self.assertRaises(CommandError):
            call_command(
                'configure_alipay',
                merchant_email='nope',
                merchant_uid='2088101122136241',
                signature_key=SIGN_KEY,
                stdout=StringIO(),
                stderr=StringIO(),
            )
        self.assertFalse(PaymentGatewayConfig.objects.exists())
