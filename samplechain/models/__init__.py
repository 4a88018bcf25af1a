from samplechain.models.user import User
from samplechain.models.sample import Sample
from samplechain.models.shipment import Shipment, ShipmentSample, ShipmentTracking
from samplechain.models.supply import ShippingSupply, SupplyTransaction, ShipmentSupplyUsage
from samplechain.models.custody import ChainOfCustodyEvent
from samplechain.models.declaration import DangerousGoodsDeclaration

__all__ = [
    'User',
    'Sample',
    'Shipment',
    'ShipmentSample',
    'ShipmentTracking',
    'ShippingSupply',
    'SupplyTransaction',
    'ShipmentSupplyUsage',
    'ChainOfCustodyEvent',
    'DangerousGoodsDeclaration',
]
