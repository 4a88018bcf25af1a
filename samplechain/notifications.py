# samplechain/notifications.py

import functools

from flask import current_app
from flask_login import current_user
from flask_socketio import emit, disconnect, join_room
from redis.exceptions import RedisError

from samplechain.extensions import socketio

TEMPLATES = {
    'shipment_created': 'Shipment {shipment_number} received ({line_count} sample(s))',
    'shipment_shipped': 'Shipment {shipment_number} shipped, tracking {tracking_number}',
    'shipment_delivered': 'Shipment {shipment_number} delivered',
    'supply_low_stock': 'Supply {name} is low: {current_quantity} {unit} left',
}


def user_room(user_id):
    return f'user:{user_id}'


def authenticated_only(f):
    @functools.wraps(f)
    def wrapped(*args, **kwargs):
        if not current_user.is_authenticated:
            disconnect()
            return False
        return f(*args, **kwargs)
    return wrapped


def best_effort(f):
    """Log and swallow every failure of a notification.

    Notifications are sent after the owning transaction committed and
    must never turn a successful request into an error.
    """
    @functools.wraps(f)
    def wrapped(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except RedisError as e:
            current_app.logger.error(f"Redis error while notifying: {str(e)}")
        except Exception as e:
            current_app.logger.error(f"Unexpected error while notifying: {str(e)}")
        return None
    return wrapped


@socketio.on('connect')
@authenticated_only
def handle_connect():
    """Put each client in its own user room"""
    join_room(user_room(current_user.id))
    emit('status', {'msg': f'{current_user.username} connected'})
    current_app.logger.info(f'Client connected: {current_user.username}')
    return True


@socketio.on('disconnect')
def handle_disconnect():
    if current_user.is_authenticated:
        current_app.logger.info(f'Client disconnected: {current_user.username}')


@best_effort
def notify(recipient, template, data):
    """
    Send a notification to one user.
    Args:
        recipient: User receiving the notification
        template: key of TEMPLATES
        data: values rendered into the template and sent along
    """
    message = TEMPLATES[template].format(**data)
    payload = {
        'template': template,
        'message': message,
        'data': data,
    }
    socketio.emit('notification', payload, to=user_room(recipient.id))
    current_app.logger.info(f'Notified user {recipient.id}: {message}')
    return payload


@best_effort
def notify_stock_alert(supply):
    """
    Broadcast a low-stock alert for a shipping supply.
    Args:
        supply: ShippingSupply at or under its threshold
    """
    level = supply.check_stock_level()
    payload = {
        'supply_id': supply.id,
        'name': supply.name,
        'level': level,
        'current_quantity': supply.current_quantity,
        'unit': supply.unit,
        'threshold': supply.low_stock_threshold,
        'message': TEMPLATES['supply_low_stock'].format(
            name=supply.name, current_quantity=supply.current_quantity, unit=supply.unit
        ),
    }
    socketio.emit('stock_alert', payload)
    current_app.logger.warning(payload['message'])
    return payload
