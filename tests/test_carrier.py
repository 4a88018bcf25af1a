from samplechain.address import Address
from samplechain.carrier import SandboxCarrier, estimated_delivery

ORIGIN = Address('1 Lab Way', 'Austin', 'TX', '78701', 'US')
DESTINATION = Address('77 Elm St', 'Boston', 'MA', '02110', 'US')


def test_sandbox_tracking_survives_a_new_instance():
    label = SandboxCarrier().generate_label(ORIGIN, DESTINATION, 2, 'FEDEX_2_DAY')
    assert label.estimated_delivery == estimated_delivery('FEDEX_2_DAY')

    # Another worker, or the same one after a restart
    info = SandboxCarrier().get_tracking(label.tracking_number)
    assert info.status == 'in_transit'
    assert info.estimated_delivery == label.estimated_delivery


def test_sandbox_delivers_once_estimate_passed():
    info = SandboxCarrier().get_tracking('MOCK202001011234567890')
    assert info.status == 'delivered'
    assert info.estimated_delivery == '2020-01-01'


def test_sandbox_unknown_tracking_number():
    for tracking_number in ('1Z999', 'MOCK20201399123', None):
        info = SandboxCarrier().get_tracking(tracking_number)
        assert info.status == 'in_transit'
        assert info.estimated_delivery is None
