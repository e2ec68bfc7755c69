"""
Alipay API Client

Signed requests against the Alipay cross-border (forex) trade API.
Documentation: https://intl.alipay.com/doc/gr/hx6vzr
"""

import enum
import hashlib
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional, Union
from urllib.parse import unquote_plus, urlencode
from zoneinfo import ZoneInfo

import requests
from django.utils import timezone
from django.utils.html import strip_tags

logger = logging.getLogger(__name__)

PRODUCTION_URL = "https://mapi.alipay.com/gateway.do"
SANDBOX_URL = "https://openapi.alipaydev.com/gateway.do"

REQUEST_TIMEOUT = 20
INPUT_CHARSET = 'UTF-8'
SIGN_TYPE = 'MD5'

# Currencies settled without a fractional part
ZERO_DECIMAL_CURRENCIES = ('KRW', 'JPY')

REFUND_TIMEZONE = 'Asia/Hong_Kong'
PLAIN_TEXT_MARKER = 'secure;'

GENERIC_ERROR_MESSAGE = 'An internal error occurred, or the server did not respond to the request.'


class AlipayError(enum.Enum):
    """Alipay API error codes and their display messages."""

    ILLEGAL_SIGN = 'Illegal signature'
    ILLEGAL_SERVICE = 'Service Parameter is incorrect'
    ILLEGAL_PARTNER = 'Incorrect Partner ID'
    ILLEGAL_SIGN_TYPE = 'Signature is of wrong type'
    ILLEGAL_PARTNER_EXTERFACE = 'Service is not activated for this account'
    ILLEGAL_DYN_MD5_KEY = 'Dynamic key information is incorrect'
    ILLEGAL_ENCRYPT = 'Encryption is incorrect'
    ILLEGAL_USER = 'User ID is incorrect'
    ILLEGAL_EXTERFACE = 'Interface configuration is incorrect'
    ILLEGAL_AGENT = 'Agency ID is incorrect'
    ILLEGAL_ARGUMENT = 'Incorrect parameter'
    ILLEGAL_CURRENCY = 'Currency parameter is incorrect'
    ILLEGAL_TIMEOUT_RULE = 'Timeout_rule parameter is incorrect'
    ILLEGAL_SECURITY_PROFILE = 'Cannot support this kind of encryption'
    REFUNDMENT_VALID_DATE_EXCEED = 'Could not refund after the specified refund timeframe.'
    REPEATED_REFUNDMENT_REQUEST = 'Duplicated refund request'
    RETURN_AMOUNT_EXCEED = 'Refund amount is over the payment amount'
    CURRENCY_NOT_SAME = 'Different currency from the payment currency'
    PURCHASE_TRADE_NOT_EXIST = 'The payment transaction does not exist'


def error_message(code: Optional[str]) -> str:
    """Resolve an Alipay error code to its message, falling back to a generic one."""
    try:
        return AlipayError[code].value
    except KeyError:
        return GENERIC_ERROR_MESSAGE


class AlipayApiError(Exception):
    """Raised when Alipay rejects a request or cannot be reached."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass(frozen=True)
class Credentials:
    merchant_uid: str
    signature_key: str = field(repr=False)
    sandbox: bool = False


@dataclass(frozen=True)
class XmlResult:
    """Tag/value pairs scanned from an XML response."""

    fields: Dict[str, Union[str, bool]]

    @property
    def is_success(self) -> Optional[bool]:
        return self.fields.get('is_success')

    @property
    def error(self) -> Optional[str]:
        return self.fields.get('error')

    @property
    def error_msg(self) -> Optional[str]:
        return self.fields.get('error_msg')

    def get(self, key, default=None):
        return self.fields.get(key, default)


@dataclass(frozen=True)
class PlainResult:
    text: str


@dataclass(frozen=True)
class EmptyResult:
    pass


ParsedResponse = Union[XmlResult, PlainResult, EmptyResult]


@dataclass(frozen=True)
class ApiResult:
    """Outcome of a single API call."""

    url: str
    params: Dict[str, str]
    headers: Dict[str, str]
    response: ParsedResponse
    body: str = ''

    def to_dict(self) -> Dict:
        if isinstance(self.response, XmlResult):
            response = dict(self.response.fields)
        elif isinstance(self.response, PlainResult):
            response = self.response.text
        else:
            response = None
        return {
            'url': self.url,
            'params': self.params,
            'headers': self.headers,
            'response': response,
        }


def round_zero_decimal(amount) -> str:
    """Round an amount half-up to a whole number."""
    value = Decimal(str(amount)).quantize(Decimal('1'), rounding=ROUND_HALF_UP)
    return str(value)


def build_signature(params: Dict[str, str], sign_key: str) -> str:
    """
    Compute the MD5 signature of a parameter set.

    The ``sign`` and ``sign_type`` entries are left out, the rest is sorted
    by key and joined as an unescaped query string before the key is appended.
    """
    data = {
        key: value for key, value in params.items()
        if key not in ('sign', 'sign_type')
    }
    query = unquote_plus(urlencode(sorted(data.items())))
    return hashlib.md5((query + sign_key).encode('utf-8')).hexdigest()


class AlipayClient:
    """
    Thin client for the Alipay gateway.

    Every call is a single signed GET request; nothing is retried.
    """

    def __init__(self, credentials: Credentials):
        self.credentials = credentials

    @property
    def url(self) -> str:
        return SANDBOX_URL if self.credentials.sandbox else PRODUCTION_URL

    def _build_params(self, method: str, params: Dict) -> Dict[str, str]:
        settings = {
            '_input_charset': INPUT_CHARSET,
            'service': method,
            'partner': self.credentials.merchant_uid,
            'sign_type': SIGN_TYPE,
        }
        # Unset optional fields are neither sent nor signed
        merged = {**settings, **{key: str(value) for key, value in params.items() if value is not None}}
        merged['sign'] = build_signature(merged, self.credentials.signature_key)
        return merged

    def _api_request(self, method: str, params: Dict) -> ApiResult:
        url = self.url
        params = self._build_params(method, params)

        logger.info(f"Alipay API Request: GET {url} ({method})")

        try:
            response = requests.get(
                url,
                params=params,
                timeout=REQUEST_TIMEOUT,
                allow_redirects=False
            )
        except requests.exceptions.RequestException as e:
            logger.exception(f"Alipay {method} request failed")
            raise AlipayApiError(GENERIC_ERROR_MESSAGE) from e

        body = response.text or ''
        logger.info(f"Alipay API Response: {response.status_code} from {url} ({method})")

        if 'ILLEGAL_' in body:
            code = self._extract_illegal_code(body)
            logger.warning(f"Alipay rejected {method}: {code}")
            raise AlipayApiError(error_message(code), code=code)

        headers = self.parse_headers(response)

        return ApiResult(
            url=url,
            params=params,
            headers=headers,
            response=self.parse_response(headers, body),
            body=body
        )

    @staticmethod
    def _extract_illegal_code(body: str) -> str:
        match = re.search(r'ILLEGAL_[A-Z0-9_]*', strip_tags(body))
        return match.group(0) if match else 'ILLEGAL_'

    @staticmethod
    def parse_headers(response) -> Dict[str, str]:
        """Lower-cased header names mapped to trimmed values."""
        return {key.lower(): value.strip() for key, value in response.headers.items()}

    @staticmethod
    def parse_response(headers: Dict[str, str], body: str) -> ParsedResponse:
        content_type = headers.get('content-type', '')

        if 'text/xml' in content_type:
            xml = body[body.find('<'):] if '<' in body else ''
            result = {}
            for tag, value in re.findall(r'<(.*?)>([^<]+)</\1>', xml, re.IGNORECASE):
                result[tag] = value

            if 'error' in result:
                result['error_msg'] = error_message(result['error'])
            if 'is_success' in result:
                result['is_success'] = result['is_success'] == 'T'

            return XmlResult(fields=result)

        if 'text/plain' in content_type:
            if PLAIN_TEXT_MARKER in body:
                body = body.split(PLAIN_TEXT_MARKER, 1)[1]
            return PlainResult(text=body.strip())

        return EmptyResult()

    def request_payment(self, params: Dict) -> ApiResult:
        """
        Request a payment.

        Args:
            params: subject, out_trade_no, currency, total_fee, supplier,
                notify_url and optionally return_url

        Returns:
            ApiResult; a successful request carries a ``location`` header
            pointing at the Alipay cashier page
        """
        params = dict(params)
        if params.get('currency') in ZERO_DECIMAL_CURRENCIES:
            params['total_fee'] = round_zero_decimal(params['total_fee'])

        return self._api_request('create_forex_trade', params)

    def request_refund(self, params: Dict) -> ApiResult:
        """
        Request a payment refund.

        Args:
            params: out_return_no, out_trade_no, return_amount, currency, reason
        """
        params = dict(params)
        if params.get('currency') in ZERO_DECIMAL_CURRENCIES:
            params['return_amount'] = round_zero_decimal(params['return_amount'])

        now = timezone.now().astimezone(ZoneInfo(REFUND_TIMEZONE))
        params['gmt_return'] = now.strftime('%Y%m%d%H%M%S')

        return self._api_request('forex_refund', params)

    def verify_notification(self, notify_id: str) -> bool:
        """Confirm a notification was sent by Alipay."""
        result = self._api_request('notify_verify', {'notify_id': notify_id})
        return 'true' in result.body
