# samplechain/carrier.py
"""Carrier collaborator: address validation, rates, labels and tracking.

``FedExCarrier`` talks to the carrier's REST API when credentials are
configured; otherwise ``SandboxCarrier`` issues deterministic mock labels so
the fulfillment workflow can run end to end. Every failure surfaces as
``ExternalServiceError`` and is safe to retry.
"""

import re
import time
from collections import namedtuple
from datetime import datetime, timedelta
from decimal import Decimal

import requests
from flask import current_app

from samplechain.address import Address
from samplechain.errors import ExternalServiceError
from samplechain.utils import utcnow

AddressValidation = namedtuple('AddressValidation', ['valid', 'corrected_address', 'warning'])
RateQuote = namedtuple('RateQuote', ['rate', 'currency'])
LabelResult = namedtuple('LabelResult', ['tracking_number', 'label', 'cost', 'estimated_delivery'])
TrackingInfo = namedtuple('TrackingInfo', ['tracking_number', 'status', 'location', 'estimated_delivery'])

TRACKING_STATUSES = ('processing', 'in_transit', 'out_for_delivery', 'delivered', 'exception')

_SCAN_STATUS = {
    'On FedEx vehicle for delivery': 'out_for_delivery',
    'Delivered': 'delivered',
    'In transit': 'in_transit',
    'Package information received': 'processing',
    'Exception': 'exception',
}

_SANDBOX_TRACKING = re.compile(r'^MOCK(\d{8})\d+$')

_TRANSIT_DAYS = {
    'PRIORITY_OVERNIGHT': 1,
    'OVERNIGHT_EXPRESS': 1,
    'FEDEX_2_DAY': 2,
    'EXPRESS_SAVER': 3,
    'FEDEX_EXPRESS_SAVER': 3,
    'FEDEX_GROUND': 5,
    'GROUND_HOME_DELIVERY': 5,
}


def estimated_delivery(service):
    days = _TRANSIT_DAYS.get(service, 5)
    return (utcnow() + timedelta(days=days)).date().isoformat()


def _address_payload(address):
    return {
        'streetLines': [address.street],
        'city': address.city,
        'stateOrProvinceCode': address.state,
        'postalCode': address.postal_code,
        'countryCode': address.country or 'US',
    }


class FedExCarrier:
    """REST client with OAuth client-credential tokens and bounded timeouts."""

    name = 'fedex'

    def __init__(self, base_url, api_key, secret_key, account_number,
                 connect_timeout=5, read_timeout=20, shipper=None, logger=None):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.secret_key = secret_key
        self.account_number = account_number
        self.timeout = (connect_timeout, read_timeout)
        self.shipper = shipper or {}
        self.logger = logger
        self.session = requests.Session()
        self._token = None
        self._token_expires_at = 0

    def close(self):
        self.session.close()

    def _log(self, level, message):
        if self.logger is not None:
            getattr(self.logger, level)(message)

    def _auth_token(self):
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        try:
            response = self.session.post(
                f'{self.base_url}/oauth/token',
                data={
                    'grant_type': 'client_credentials',
                    'client_id': self.api_key,
                    'client_secret': self.secret_key,
                },
                headers={'Content-Type': 'application/x-www-form-urlencoded'},
                timeout=self.timeout
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise ExternalServiceError('Carrier authentication failed', carrier=self.name) from exc
        token = body.get('access_token')
        if not token:
            raise ExternalServiceError('Carrier authentication returned no token', carrier=self.name)
        self._token = token
        # Refresh a minute early
        self._token_expires_at = time.monotonic() + max(int(body.get('expires_in', 3600)) - 60, 0)
        return token

    def _post(self, path, payload, operation):
        headers = {
            'Authorization': f'Bearer {self._auth_token()}',
            'Content-Type': 'application/json',
            'X-locale': 'en_US',
        }
        try:
            response = self.session.post(
                f'{self.base_url}{path}', json=payload, headers=headers, timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except requests.Timeout as exc:
            self._log('warning', f'Carrier {operation} timed out')
            raise ExternalServiceError(f'Carrier {operation} timed out', carrier=self.name) from exc
        except (requests.RequestException, ValueError) as exc:
            self._log('error', f'Carrier {operation} failed: {exc}')
            raise ExternalServiceError(f'Carrier {operation} failed', carrier=self.name) from exc

    def validate_address(self, address):
        body = self._post(
            '/address/v1/addresses/resolve',
            {'addressesToValidate': [{'address': _address_payload(address)}]},
            'address validation'
        )
        output = body.get('output') or {}
        resolved = (output.get('resolvedAddresses') or [None])[0]
        if resolved:
            corrected = Address(
                street=(resolved.get('streetLinesToken') or [address.street])[0],
                city=resolved.get('city') or address.city,
                state=resolved.get('stateOrProvinceCode') or address.state,
                postal_code=resolved.get('postalCode') or address.postal_code,
                country=resolved.get('countryCode') or address.country
            )
            return AddressValidation(True, corrected, None)
        if output.get('parsedAddresses'):
            return AddressValidation(True, address, 'Address parsed but not fully resolved')
        return AddressValidation(False, None, 'Address could not be resolved')

    def quote_rate(self, origin, destination, weight, service, weight_unit='LB'):
        body = self._post(
            '/rate/v1/rates/quotes',
            {
                'accountNumber': {'value': self.account_number},
                'requestedShipment': {
                    'shipper': {'address': _address_payload(origin)},
                    'recipient': {'address': _address_payload(destination)},
                    'serviceType': service,
                    'pickupType': 'USE_SCHEDULED_PICKUP',
                    'requestedPackageLineItems': [
                        {'weight': {'units': weight_unit, 'value': float(weight)}}
                    ],
                },
            },
            'rate quote'
        )
        details = (body.get('output') or {}).get('rateReplyDetails') or []
        try:
            charge = details[0]['ratedShipmentDetails'][0]['totalNetCharge']
        except (IndexError, KeyError, TypeError):
            raise ExternalServiceError('Carrier returned no rate', carrier=self.name, service=service)
        return RateQuote(Decimal(str(charge)), 'USD')

    def _dangerous_goods(self, service, hazmat):
        service_type = 'HAZARDOUS_MATERIALS' if 'GROUND' in service else 'DANGEROUS_GOODS'
        if not hazmat.get('un_number'):
            return {'specialServiceTypes': ['DANGEROUS_GOODS']}
        return {
            'specialServiceTypes': [service_type],
            'dangerousGoodsDetail': {
                'offeror': self.shipper.get('company'),
                'emergencyContactNumber': self.shipper.get('emergency_phone'),
                'regulation': 'DOT',
                'accessibility': 'ACCESSIBLE',
                'options': ['HAZARDOUS_MATERIALS'],
                'containers': [{
                    'containerType': 'PACKAGE',
                    'hazardousCommodities': [{
                        'description': {
                            'id': hazmat.get('un_number'),
                            'sequenceNumber': 1,
                            'packingGroup': hazmat.get('packing_group') or 'II',
                            'properShippingName': hazmat.get('proper_shipping_name'),
                            'hazardClass': hazmat.get('hazard_class'),
                        },
                        'quantity': {
                            'amount': float(hazmat.get('quantity') or 1),
                            'units': (hazmat.get('quantity_units') or 'ML').upper(),
                        },
                    }],
                }],
            },
        }

    def generate_label(self, origin, destination, weight, service, recipient=None, hazmat=None,
                       weight_unit='LB'):
        recipient = recipient or {}
        package = {'weight': {'units': weight_unit, 'value': float(weight)}}
        if hazmat is not None:
            package['packageSpecialServices'] = self._dangerous_goods(service, hazmat)
        payload = {
            'labelResponseOptions': 'URL_ONLY',
            'accountNumber': {'value': self.account_number},
            'requestedShipment': {
                'shipper': {
                    'contact': {
                        'personName': self.shipper.get('contact'),
                        'phoneNumber': self.shipper.get('phone'),
                        'companyName': self.shipper.get('company'),
                    },
                    'address': _address_payload(origin),
                },
                'recipients': [{
                    'contact': {
                        'personName': recipient.get('name'),
                        'phoneNumber': recipient.get('phone'),
                    },
                    'address': _address_payload(destination),
                }],
                'shipDatestamp': utcnow().date().isoformat(),
                'serviceType': service,
                'packagingType': 'YOUR_PACKAGING',
                'pickupType': 'USE_SCHEDULED_PICKUP',
                'shippingChargesPayment': {'paymentType': 'SENDER'},
                'labelSpecification': {
                    'labelFormatType': 'COMMON2D',
                    'imageType': 'PDF',
                    'labelStockType': 'PAPER_4X6',
                },
                'requestedPackageLineItems': [package],
            },
        }
        self._log('info', f'Carrier label requested: service={service} hazmat={hazmat is not None}')
        body = self._post('/ship/v1/shipments', payload, 'label generation')
        shipments = (body.get('output') or {}).get('transactionShipments') or []
        if not shipments:
            raise ExternalServiceError('Carrier returned no shipment', carrier=self.name)
        shipment = shipments[0]
        tracking_number = shipment.get('masterTrackingNumber') or shipment.get('trackingNumber')
        if not tracking_number:
            raise ExternalServiceError('Carrier returned no tracking number', carrier=self.name)
        cost = Decimal('0')
        rate_details = (shipment.get('shipmentRating') or {}).get('shipmentRateDetails') or []
        if rate_details and rate_details[0].get('totalNetCharge') is not None:
            cost = Decimal(str(rate_details[0]['totalNetCharge']))
        pieces = shipment.get('pieceResponses') or [{}]
        return LabelResult(
            tracking_number=tracking_number,
            label=pieces[0].get('labelDownloadUrl') or '',
            cost=cost,
            estimated_delivery=estimated_delivery(service)
        )

    def get_tracking(self, tracking_number):
        body = self._post(
            '/track/v1/trackingnumbers',
            {
                'trackingInfo': [{'trackingNumberInfo': {'trackingNumber': tracking_number}}],
                'includeDetailedScans': True,
            },
            'tracking'
        )
        try:
            result = body['output']['completeTrackResults'][0]['trackResults'][0]
        except (KeyError, IndexError, TypeError):
            raise ExternalServiceError(
                'Tracking information not found', carrier=self.name, tracking_number=tracking_number
            )
        latest = (result.get('scanEvents') or [{}])[0]
        estimate = next(
            (d.get('dateTime') for d in result.get('dateAndTime') or []
             if d.get('type') == 'ESTIMATED_DELIVERY'),
            None
        )
        return TrackingInfo(
            tracking_number=tracking_number,
            status=_SCAN_STATUS.get(latest.get('eventDescription'), 'in_transit'),
            location=(latest.get('locationAddress') or {}).get('city') or 'Unknown',
            estimated_delivery=estimate
        )


def _sandbox_estimate(tracking_number):
    match = _SANDBOX_TRACKING.match(tracking_number or '')
    if not match:
        return None
    try:
        return datetime.strptime(match.group(1), '%Y%m%d').date().isoformat()
    except ValueError:
        return None


class SandboxCarrier:
    """Mock carrier used when no carrier credentials are configured.

    Labels get ``MOCK<YYYYMMDD><serial>`` tracking numbers carrying their
    estimated delivery date, so any worker can answer tracking queries; a
    shipment reads as delivered once that date has passed.
    """

    name = 'sandbox'

    def __init__(self, logger=None):
        self.logger = logger

    def close(self):
        pass

    def validate_address(self, address):
        return AddressValidation(True, address, 'Address validation skipped (sandbox mode)')

    def quote_rate(self, origin, destination, weight, service, weight_unit='LB'):
        per_unit = Decimal('45') if 'OVERNIGHT' in service else Decimal('12')
        return RateQuote(Decimal(str(weight)) * per_unit, 'USD')

    def generate_label(self, origin, destination, weight, service, recipient=None, hazmat=None,
                       weight_unit='LB'):
        estimate = estimated_delivery(service)
        tracking_number = f'MOCK{estimate.replace("-", "")}{str(time.time_ns())[-10:]}'
        if self.logger is not None:
            self.logger.warning(f'Sandbox carrier issued mock label {tracking_number}')
        return LabelResult(
            tracking_number=tracking_number,
            label='MOCK_LABEL_BASE64',
            cost=self.quote_rate(origin, destination, weight, service).rate,
            estimated_delivery=estimate
        )

    def get_tracking(self, tracking_number):
        estimate = _sandbox_estimate(tracking_number)
        delivered = estimate is not None and estimate <= utcnow().date().isoformat()
        return TrackingInfo(
            tracking_number=tracking_number,
            status='delivered' if delivered else 'in_transit',
            location='Sandbox',
            estimated_delivery=estimate
        )


def ship_from_address(config):
    return Address(
        street=config['LAB_SHIP_FROM_STREET'],
        city=config['LAB_SHIP_FROM_CITY'],
        state=config['LAB_SHIP_FROM_STATE'],
        postal_code=config['LAB_SHIP_FROM_POSTAL_CODE'],
        country=config['LAB_SHIP_FROM_COUNTRY']
    )


def init_carrier(app):
    """Create the carrier client for this app from its config."""
    config = app.config
    if config.get('CARRIER_API_KEY') and config.get('CARRIER_SECRET_KEY'):
        carrier = FedExCarrier(
            base_url=config['CARRIER_API_BASE_URL'],
            api_key=config['CARRIER_API_KEY'],
            secret_key=config['CARRIER_SECRET_KEY'],
            account_number=config.get('CARRIER_ACCOUNT_NUMBER'),
            connect_timeout=config['CARRIER_CONNECT_TIMEOUT'],
            read_timeout=config['CARRIER_READ_TIMEOUT'],
            shipper={
                'company': config['LAB_COMPANY_NAME'],
                'contact': config['LAB_CONTACT_NAME'],
                'phone': config['LAB_PHONE'],
                'emergency_phone': config['LAB_EMERGENCY_PHONE'],
            },
            logger=app.logger
        )
    else:
        app.logger.warning('Carrier credentials not configured. Using sandbox carrier.')
        carrier = SandboxCarrier(logger=app.logger)
    app.extensions['carrier'] = carrier
    return carrier


def get_carrier():
    return current_app.extensions['carrier']
