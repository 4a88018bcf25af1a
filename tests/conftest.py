import os
import tempfile
from decimal import Decimal

import pytest
from config import TestingConfig
from samplechain import create_app
from samplechain.carrier import AddressValidation, LabelResult, RateQuote, TrackingInfo
from samplechain.errors import ExternalServiceError
from samplechain.extensions import db
from samplechain.models import User, Sample, ShippingSupply
from samplechain.services import shipments

RECIPIENT = {
    'name': 'Dana Reyes',
    'phone': '5125550100',
    'email': 'dana@example.com',
    'company': 'Acme Analytical',
}

ADDRESS = {
    'street': '500 Congress Ave',
    'city': 'Austin',
    'state': 'TX',
    'postal_code': '78701',
}


class FakeCarrier:
    """In-memory carrier; set ``fail`` to make every call raise."""

    name = 'fake'

    def __init__(self):
        self.fail = False
        self.tracking_status = 'in_transit'
        self.labels = []
        self.tracking_calls = 0

    def _check(self, operation):
        if self.fail:
            raise ExternalServiceError(f'Carrier {operation} timed out', carrier=self.name)

    def validate_address(self, address):
        self._check('address validation')
        return AddressValidation(True, address, None)

    def quote_rate(self, origin, destination, weight, service, weight_unit='LB'):
        self._check('rate quote')
        return RateQuote(Decimal('18.75'), 'USD')

    def generate_label(self, origin, destination, weight, service, recipient=None, hazmat=None,
                       weight_unit='LB'):
        self._check('label generation')
        self.labels.append({
            'destination': destination,
            'weight': weight,
            'service': service,
            'recipient': recipient,
            'hazmat': hazmat,
        })
        return LabelResult(
            tracking_number=f'FAKE{len(self.labels):08d}',
            label=f'https://labels.example.com/{len(self.labels)}.pdf',
            cost=Decimal('42.50'),
            estimated_delivery='2026-10-23'
        )

    def get_tracking(self, tracking_number):
        self.tracking_calls += 1
        self._check('tracking')
        return TrackingInfo(tracking_number, self.tracking_status, 'Memphis', '2026-10-23')


@pytest.fixture
def app():
    """Create and configure a new app instance for each test."""
    # Create a temporary file to isolate the database for each test
    db_fd, db_path = tempfile.mkstemp()

    app = create_app(TestingConfig, {
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
    })
    app.extensions['carrier'] = FakeCarrier()

    with app.app_context():
        db.create_all()
        init_test_data()

    yield app

    with app.app_context():
        db.session.remove()
        db.engine.dispose()
    # Close and remove the temporary database
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def carrier(app):
    return app.extensions['carrier']


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """A test runner for the app's Click commands."""
    return app.test_cli_runner()


def login(client, username, password=None):
    response = client.post('/auth/login', json={
        'username': username,
        'password': password or username,
    })
    assert response.status_code == 200, response.get_json()
    return client


@pytest.fixture
def requester_client(app):
    return login(app.test_client(), 'requester')


@pytest.fixture
def staff_client(app):
    return login(app.test_client(), 'staff')


@pytest.fixture
def logistics_client(app):
    return login(app.test_client(), 'logistics')


def get_user(username):
    return User.query.filter_by(username=username).first()


def get_sample(lot_number):
    return Sample.query.filter_by(lot_number=lot_number).first()


def get_supply(name):
    return ShippingSupply.query.filter_by(name=name).first()


def no_notify(*args, **kwargs):
    return None


@pytest.fixture
def make_shipment(app):
    """Create a shipment through the service layer; call inside an app context."""
    def _make(items, username='requester', **kwargs):
        kwargs.setdefault('address', dict(ADDRESS))
        kwargs.setdefault('notifier', no_notify)
        return shipments.create_shipment(get_user(username), dict(RECIPIENT), items, **kwargs)
    return _make


def init_test_data():
    """Initialize test data."""
    for username, role in (
        ('admin', 'admin'),
        ('staff', 'lab_staff'),
        ('logistics', 'logistics'),
        ('requester', 'requester'),
        ('other', 'requester'),
    ):
        user = User(username=username, email=f'{username}@test.com', role=role)
        user.set_password(username)
        db.session.add(user)

    db.session.add_all([
        Sample(lot_number='LOT-A', chemical_name='Sodium chloride', quantity='5g'),
        Sample(lot_number='LOT-B', chemical_name='Potassium nitrate', quantity='2g'),
        Sample(lot_number='LOT-C', chemical_name='Glycine', quantity='1: 0.91g, 2: 3.91g'),
        Sample(lot_number='LOT-ML', chemical_name='Buffer solution', quantity='50ml'),
        Sample(
            lot_number='LOT-HAZ',
            chemical_name='Acetone',
            quantity='100ml',
            un_number='UN1090',
            hazard_class='3',
            packing_group='II',
            proper_shipping_name='Acetone'
        ),
        Sample(lot_number='LOT-Q', chemical_name='Ethanol', quantity='10g', status='quarantined'),
    ])

    db.session.add_all([
        ShippingSupply(name='Insulated shipper', supply_type='box', current_quantity=10,
                       low_stock_threshold=2),
        ShippingSupply(name='Dry ice pack', supply_type='coolant', current_quantity=3,
                       low_stock_threshold=5),
    ])

    db.session.commit()
