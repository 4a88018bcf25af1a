# samplechain/errors.py

from flask import jsonify


class SampleChainError(Exception):
    """Base class for errors surfaced to API callers.

    Every error names the offending entity in ``details`` so callers can
    tell which lot, sample, shipment, or supply was rejected.
    """
    status_code = 500
    code = 'error'
    retryable = False

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {
            'error': self.code,
            'message': self.message,
        }
        if self.details:
            payload['details'] = self.details
        if self.retryable:
            payload['retryable'] = True
        return payload


class ValidationError(SampleChainError):
    status_code = 400
    code = 'validation_error'


class InvalidQuantityFormat(ValidationError):
    code = 'invalid_quantity_format'


class NotFoundError(SampleChainError):
    status_code = 404
    code = 'not_found'


class InsufficientQuantity(SampleChainError):
    """Raised when a debit exceeds the quantity available."""
    status_code = 409
    code = 'insufficient_quantity'

    def __init__(self, message, available=None, requested=None, **details):
        if available is not None:
            details['available'] = str(available)
        if requested is not None:
            details['requested'] = str(requested)
        super().__init__(message, **details)


class InsufficientInventory(InsufficientQuantity):
    code = 'insufficient_inventory'


class ConflictError(SampleChainError):
    status_code = 409
    code = 'conflict'


class InvalidTransition(ConflictError):
    code = 'invalid_transition'


class ImmutableRecordError(ConflictError):
    code = 'immutable_record'


class ExternalServiceError(SampleChainError):
    status_code = 503
    code = 'external_service_error'
    retryable = True


class InternalError(SampleChainError):
    status_code = 500
    code = 'internal_error'


def register_error_handlers(app):
    """Render SampleChainError subclasses as JSON responses."""

    @app.errorhandler(SampleChainError)
    def handle_samplechain_error(error):
        if isinstance(error, InternalError):
            app.logger.error(f'Internal error: {error.message} {error.details}')
            payload = {'error': error.code, 'message': 'An unexpected error occurred.'}
            if app.debug:
                payload['details'] = error.details
            return jsonify(payload), error.status_code
        app.logger.info(f'{error.code}: {error.message}')
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(403)
    def handle_forbidden(error):
        return jsonify({'error': 'forbidden', 'message': 'Insufficient role for this operation.'}), 403

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({'error': 'not_found', 'message': 'Resource not found.'}), 404

    @app.errorhandler(429)
    def handle_rate_limited(error):
        return jsonify({'error': 'rate_limited', 'message': str(error.description)}), 429
