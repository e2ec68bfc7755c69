from decimal import Decimal, InvalidOperation
from functools import wraps
import logging

from django.conf import settings
from django.contrib import messages
from django.contrib.auth.decorators import login_required
from django.contrib.auth.views import redirect_to_login
from django.core.exceptions import PermissionDenied
from django.http import Http404, HttpResponse, HttpResponseBadRequest
from django.shortcuts import redirect, render
from django.urls import reverse
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from .forms import AlipaySettingsForm
from .gateways import get_gateway_adapter
from .models import GatewayTransaction, PaymentGatewayConfig

logger = logging.getLogger(__name__)


def is_gateway_admin(user):
    """Check if user may manage payment gateways."""
    return user.is_superuser or user.is_staff


def admin_required(view_func):
    """Decorator to require staff or superuser access."""
    @wraps(view_func)
    def _wrapped_view(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return redirect_to_login(request.get_full_path())
        if not is_gateway_admin(request.user):
            raise PermissionDenied("You don't have permission to access this page.")
        return view_func(request, *args, **kwargs)
    return _wrapped_view


def htmx_render(request, full_template, partial_template, context=None):
    """Render full template for regular requests, partial for HTMX requests."""
    context = context or {}
    template = partial_template if request.htmx else full_template
    return render(request, template, context)


def get_active_config():
    return PaymentGatewayConfig.objects.filter(gateway='ALIPAY', is_active=True).first()


def build_adapter(request, config):
    """Adapter for the current request, wired with the host's settings."""
    return get_gateway_adapter(
        config,
        request_path=request.get_full_path(),
        company_name=settings.PAYMENTS_COMPANY_NAME,
        notify_url=request.build_absolute_uri(reverse('payments:alipay_notify')),
    )


def record_transaction(config, record, source, payload, verified=False):
    """
    Store a transaction reported by the gateway.

    Verified notifications are kept once per gateway transaction ID. Unverified
    callbacks never touch a verified row.
    """
    try:
        amount = Decimal(record.amount) if record.amount not in (None, '') else None
    except InvalidOperation:
        amount = None

    defaults = {
        'client_id': record.client_id,
        'amount': amount,
        'currency': record.currency or '',
        'status': record.status,
        'reference_id': record.reference_id or '',
        'invoices': record.invoices,
        'source': source,
        'callback_data': payload,
    }

    if not record.transaction_id:
        return GatewayTransaction.objects.create(gateway_config=config, verified=verified, **defaults)

    if not verified:
        # Skip if already processed
        processed = GatewayTransaction.objects.filter(
            gateway_config=config,
            transaction_id=record.transaction_id,
            verified=True
        ).first()
        if processed:
            logger.warning(f"Ignoring unverified {source} callback for processed transaction {record.transaction_id}")
            return processed

    lookup = {'verified': True} if verified else {'verified': False, 'source': source}
    transaction, _ = GatewayTransaction.objects.update_or_create(
        gateway_config=config,
        transaction_id=record.transaction_id,
        defaults=defaults,
        **lookup
    )
    return transaction


# =============================================================================
# PAYMENT GATEWAY SETTINGS
# =============================================================================

@admin_required
def gateway_settings(request):
    """Alipay configuration page."""
    config = PaymentGatewayConfig.objects.filter(gateway='ALIPAY').first()

    if request.method == 'POST':
        form = AlipaySettingsForm(request.POST, instance=config)
        if form.is_valid():
            config = form.save(commit=False)
            config.verification_status = 'PENDING'
            config.save()
            messages.success(request, 'Alipay configuration saved.')
            return redirect('payments:gateway_settings')
    else:
        form = AlipaySettingsForm(instance=config)

    context = {
        'config': config,
        'form': form,
    }

    return htmx_render(
        request,
        'payments/gateway_settings.html',
        'payments/partials/gateway_settings_content.html',
        context
    )


@admin_required
@require_POST
def gateway_verify(request):
    """Verify gateway credentials."""
    config = PaymentGatewayConfig.objects.filter(gateway='ALIPAY').first()
    if not config:
        messages.error(request, 'Alipay has not been configured yet.')
        return redirect('payments:gateway_settings')

    adapter = build_adapter(request, config)
    is_valid, message = adapter.verify_credentials()

    if is_valid:
        config.verification_status = 'VERIFIED'
        config.verification_error = ''
        config.last_verified = timezone.now()
        messages.success(request, 'Alipay credentials verified successfully.')
    else:
        config.verification_status = 'FAILED'
        config.verification_error = message
        messages.error(request, f'Verification failed: {message}')

    config.save()
    return redirect('payments:gateway_settings')


# =============================================================================
# ONLINE PAYMENT
# =============================================================================

@login_required
@require_POST
def checkout(request):
    """
    Build the Alipay payment form for a client.
    The returned page forwards the payer to the Alipay cashier.
    """
    config = get_active_config()
    if not config:
        return render(request, 'payments/checkout_error.html', {
            'errors': ['No payment gateway is configured.'],
        }, status=503)

    client_id = request.POST.get('client_id', '').strip()
    try:
        amount = Decimal(request.POST.get('amount', ''))
    except InvalidOperation:
        amount = None

    if not client_id or amount is None or amount <= 0:
        return render(request, 'payments/checkout_error.html', {
            'errors': ['A client and a positive amount are required.'],
        }, status=400)

    invoice_amounts = [
        {'id': invoice_id, 'amount': invoice_amount}
        for invoice_id, invoice_amount in zip(
            request.POST.getlist('invoice_id'),
            request.POST.getlist('invoice_amount')
        )
        if invoice_id
    ]

    adapter = build_adapter(request, config)
    adapter.set_currency(
        request.POST.get('currency') or config.currency or settings.PAYMENTS_DEFAULT_CURRENCY
    )

    form_html = adapter.build_process(
        {'client_id': client_id},
        amount,
        invoice_amounts,
        {
            'description': request.POST.get('description', ''),
            'return_url': request.build_absolute_uri(reverse('payments:alipay_return')),
        }
    )

    if form_html is None:
        errors = [
            error['response'] for error in adapter.errors().values()
        ] or ['Alipay did not accept the payment request.']
        return render(request, 'payments/checkout_error.html', {'errors': errors}, status=502)

    return HttpResponse(form_html)


@csrf_exempt
@require_POST
def alipay_notify(request):
    """
    Handle asynchronous notifications from Alipay.
    This is called server-to-server by the gateway.
    """
    config = get_active_config()
    if not config:
        raise Http404("Alipay is not configured")

    payload = request.POST.dict()
    adapter = build_adapter(request, config)
    record = adapter.validate(request.GET.dict(), payload)

    record_transaction(config, record, 'NOTIFY', payload, verified=record.acknowledgment is not None)

    if record.acknowledgment:
        return HttpResponse(record.acknowledgment, content_type='text/plain')

    logger.warning(f"Rejected Alipay notification for client {record.client_id}")
    return HttpResponseBadRequest()


@require_GET
def alipay_return(request):
    """Handle the payer's return from the Alipay cashier."""
    config = get_active_config()
    if not config:
        raise Http404("Alipay is not configured")

    payload = request.GET.dict()
    adapter = build_adapter(request, config)
    record = adapter.success(payload, request.POST.dict())

    transaction = record_transaction(config, record, 'RETURN', payload)

    return render(request, 'payments/alipay/return.html', {
        'record': record,
        'transaction': transaction,
    })
