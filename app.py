# app.py
import io
import os
from datetime import timedelta

import qrcode
from flask import Flask, current_app, jsonify, request, send_file
from flasgger import Swagger, swag_from

import auth
from commands import register_commands
from domain import TICKET_MAX, TICKET_MIN, TOTAL_TICKETS, validate_ticket_number
from errors import AuthenticationError, LotteryError, NotFoundError, ValidationError
from holds import HoldEngine
from logging_config import get_logger, set_level
from models import db
from pricing import PricingLedger
from settings import Config
from store import MemoryTicketStore, SqlTicketStore

logger = get_logger(__name__)

# Swagger Configuration
swagger_config = {
    "headers": [],
    "specs": [
        {
            "endpoint": 'apispec',
            "route": '/apispec.json',
            "rule_filter": lambda rule: True,
            "model_filter": lambda tag: True,
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/docs"
}

swagger_template = {
    "swagger": "2.0",
    "info": {
        "title": "Lottery Ticket Storefront API",
        "description": "Browse ticket numbers 0-9999, hold them while payment is pending, "
                       "and let an admin confirm or release payments",
        "version": "1.0.0",
    },
    "schemes": ["http", "https"],
    "securityDefinitions": {
        "AdminSession": {
            "type": "apiKey",
            "name": "session",
            "in": "header",
            "description": "Session cookie issued by POST /admin/login"
        }
    }
}

TICKET_PARAM = {
    'name': 'ticket_number',
    'in': 'path',
    'type': 'integer',
    'required': True,
    'description': f'Ticket number ({TICKET_MIN}-{TICKET_MAX})'
}

ERROR_SCHEMA = {
    'type': 'object',
    'properties': {
        'status': {'type': 'string', 'example': 'error'},
        'code': {'type': 'string'},
        'message': {'type': 'string'},
        'tickets': {'type': 'array', 'items': {'type': 'integer'}}
    }
}

HOLD_SCHEMA = {
    'type': 'object',
    'properties': {
        'ticket_number': {'type': 'integer'},
        'reference_id': {'type': 'string'},
        'hold_start_time': {'type': 'string', 'format': 'date-time'},
        'hold_expiry': {'type': 'string', 'format': 'date-time'},
        'is_confirmed': {'type': 'boolean'},
        'time_remaining_seconds': {'type': 'integer'}
    }
}

PURCHASE_SCHEMA = {
    'type': 'object',
    'properties': {
        'id': {'type': 'string'},
        'reference_id': {'type': 'string', 'example': 'REF-ABC123DEF'},
        'tickets': {'type': 'array', 'items': {'type': 'integer'}},
        'total_cost': {'type': 'string', 'example': '15.00'},
        'purchase_date': {'type': 'string', 'format': 'date-time'},
        'hold_expiry': {'type': 'string', 'format': 'date-time'},
        'payment_status': {'type': 'object'}
    }
}


def _timestamp(value):
    return value.isoformat() if value is not None else None


def serialize_purchase(purchase):
    return {
        'id': purchase.id,
        'reference_id': purchase.reference_id,
        'tickets': list(purchase.tickets),
        'total_cost': str(purchase.total_cost),
        'purchase_date': _timestamp(purchase.purchase_date),
        'hold_expiry': _timestamp(purchase.hold_expiry),
        'payment_status': {str(t): paid for t, paid in purchase.payment_status.items()},
    }


def serialize_hold_info(info):
    hold = info.hold
    return {
        'ticket_number': hold.ticket_number,
        'reference_id': hold.reference_id,
        'hold_start_time': _timestamp(hold.hold_start_time),
        'hold_expiry': _timestamp(hold.hold_expiry),
        'is_confirmed': hold.is_confirmed,
        'time_remaining_seconds': int(info.time_remaining.total_seconds()),
    }


def serialize_pricing(record):
    return {
        'price': str(record.price),
        'last_updated': _timestamp(record.last_updated),
        'updated_by': record.updated_by,
    }


def get_engine() -> HoldEngine:
    return current_app.extensions['hold_engine']


def get_pricing() -> PricingLedger:
    return current_app.extensions['pricing_ledger']


def require_json():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def parse_ticket(ticket_number):
    # The route converter only accepts non-negative ints; range is checked here
    return validate_ticket_number(ticket_number)


def create_app(config=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    set_level(app.config['LOG_LEVEL'])
    db.init_app(app)
    Swagger(app, config=swagger_config, template=swagger_template)

    if app.config['TICKET_STORE'] == 'memory':
        store = MemoryTicketStore()
    else:
        store = SqlTicketStore()
    app.extensions['hold_engine'] = HoldEngine(
        store,
        hold_duration=timedelta(minutes=app.config['HOLD_DURATION_MINUTES']),
    )
    app.extensions['pricing_ledger'] = PricingLedger(app.config['DEFAULT_TICKET_PRICE'])

    register_error_handlers(app)
    register_routes(app)
    register_commands(app)

    with app.app_context():
        db.create_all()

    return app


def register_error_handlers(app):
    @app.errorhandler(LotteryError)
    def handle_lottery_error(error):
        if error.status_code >= 500:
            logger.error("Request failed", extra={"path": request.path, "code": error.code.value})
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify(NotFoundError().to_dict()), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return jsonify({
            'status': 'error',
            'code': 'METHOD_NOT_ALLOWED',
            'message': 'Method not allowed'
        }), 405

    @app.errorhandler(500)
    def handle_internal_error(error):
        logger.error("Unhandled error", extra={"path": request.path})
        return jsonify({
            'status': 'error',
            'code': 'INTERNAL_ERROR',
            'message': 'Something went wrong, try again later'
        }), 500


def register_routes(app):

    @app.route('/tickets', methods=['GET'])
    @swag_from({
        'tags': ['Tickets'],
        'description': 'Classify the ticket universe into sold and held numbers; '
                       'everything else is available',
        'responses': {
            '200': {
                'description': 'Current ticket classification',
                'schema': {
                    'type': 'object',
                    'properties': {
                        'sold': {'type': 'array', 'items': {'type': 'integer'}},
                        'held': {'type': 'array', 'items': {'type': 'integer'}},
                        'available_count': {'type': 'integer'},
                        'total_tickets': {'type': 'integer'},
                        'price': {'type': 'string', 'example': '5.00'}
                    }
                }
            }
        }
    })
    def list_tickets():
        classification = get_engine().classify()
        return jsonify({
            'sold': sorted(classification.sold),
            'held': sorted(classification.held),
            'available_count': classification.available_count,
            'total_tickets': TOTAL_TICKETS,
            'price': str(get_pricing().get_unit_price())
        })

    @app.route('/tickets/<int:ticket_number>', methods=['GET'])
    @swag_from({
        'tags': ['Tickets'],
        'description': 'Status of a single ticket number',
        'parameters': [TICKET_PARAM],
        'responses': {
            '200': {
                'description': 'Ticket status',
                'schema': {
                    'type': 'object',
                    'properties': {
                        'ticket_number': {'type': 'integer'},
                        'status': {'type': 'string', 'enum': ['available', 'held', 'sold']},
                        'hold': HOLD_SCHEMA
                    }
                }
            },
            '400': {'description': 'Ticket number out of range', 'schema': ERROR_SCHEMA}
        }
    })
    def ticket_status(ticket_number):
        engine = get_engine()
        ticket_number = parse_ticket(ticket_number)
        status = engine.ticket_status(ticket_number)
        info = engine.get_hold_info(ticket_number) if status == 'held' else None
        return jsonify({
            'ticket_number': ticket_number,
            'status': status,
            'hold': serialize_hold_info(info) if info else None
        })

    @app.route('/tickets/<int:ticket_number>/hold', methods=['GET'])
    @swag_from({
        'tags': ['Tickets'],
        'description': 'Hold details and countdown for a ticket. A zero countdown means '
                       'the hold has lapsed and is waiting for cleanup',
        'parameters': [TICKET_PARAM],
        'responses': {
            '200': {'description': 'Hold found', 'schema': HOLD_SCHEMA},
            '404': {'description': 'No hold exists for this ticket', 'schema': ERROR_SCHEMA}
        }
    })
    def hold_info(ticket_number):
        ticket_number = parse_ticket(ticket_number)
        info = get_engine().get_hold_info(ticket_number)
        if info is None:
            raise NotFoundError(f'Ticket {ticket_number} is not held')
        return jsonify(serialize_hold_info(info))

    @app.route('/purchases', methods=['POST'])
    @swag_from({
        'tags': ['Purchases'],
        'description': 'Buy a set of ticket numbers at the current price and hold them '
                       'while payment is pending',
        'parameters': [
            {
                'name': 'body',
                'in': 'body',
                'required': True,
                'schema': {
                    'type': 'object',
                    'properties': {
                        'tickets': {'type': 'array', 'items': {'type': 'integer'}, 'example': [1, 2, 3]}
                    }
                }
            }
        ],
        'responses': {
            '201': {'description': 'Tickets held', 'schema': PURCHASE_SCHEMA},
            '400': {'description': 'Invalid ticket selection', 'schema': ERROR_SCHEMA},
            '409': {'description': 'Some tickets are no longer available', 'schema': ERROR_SCHEMA},
            '503': {'description': 'Storage failure, nothing was saved', 'schema': ERROR_SCHEMA}
        }
    })
    def create_purchase():
        data = require_json()
        unit_price = get_pricing().get_unit_price()
        purchase = get_engine().purchase_and_hold(data.get('tickets'), unit_price)
        return jsonify(serialize_purchase(purchase)), 201

    @app.route('/purchases/<reference_id>', methods=['GET'])
    @swag_from({
        'tags': ['Purchases'],
        'description': 'Look up a purchase by its reference id',
        'parameters': [
            {'name': 'reference_id', 'in': 'path', 'type': 'string', 'required': True}
        ],
        'responses': {
            '200': {'description': 'Purchase found', 'schema': PURCHASE_SCHEMA},
            '404': {'description': 'Purchase not found', 'schema': ERROR_SCHEMA}
        }
    })
    def get_purchase(reference_id):
        purchase = get_engine().find_purchase(reference_id)
        return jsonify(serialize_purchase(purchase))

    @app.route('/purchases/<reference_id>/qr', methods=['GET'])
    @swag_from({
        'tags': ['Purchases'],
        'description': 'QR code carrying the payment reference and amount due',
        'produces': ['image/png'],
        'parameters': [
            {'name': 'reference_id', 'in': 'path', 'type': 'string', 'required': True}
        ],
        'responses': {
            '200': {'description': 'PNG image'},
            '404': {'description': 'Purchase not found', 'schema': ERROR_SCHEMA}
        }
    })
    def purchase_qr(reference_id):
        purchase = get_engine().find_purchase(reference_id)
        return send_file(
            generate_qr_code(purchase, request.url_root.rstrip('/')),
            mimetype='image/png',
            download_name=f'{purchase.reference_id}.png'
        )

    @app.route('/pricing', methods=['GET'])
    @swag_from({
        'tags': ['Pricing'],
        'description': 'Current price per ticket',
        'responses': {'200': {'description': 'Current pricing'}}
    })
    def current_pricing():
        return jsonify(serialize_pricing(get_pricing().get_pricing()))

    @app.route('/admin/login', methods=['POST'])
    @swag_from({
        'tags': ['Admin'],
        'description': 'Log in with the shared admin passphrase',
        'parameters': [
            {
                'name': 'body',
                'in': 'body',
                'required': True,
                'schema': {'type': 'object', 'properties': {'password': {'type': 'string'}}}
            }
        ],
        'responses': {
            '200': {'description': 'Logged in'},
            '401': {'description': 'Wrong passphrase', 'schema': ERROR_SCHEMA}
        }
    })
    def admin_login():
        data = require_json()
        if not auth.authenticate(data.get('password')):
            raise AuthenticationError('Invalid admin code')
        return jsonify({'status': 'success', 'session': auth.get_session_info()})

    @app.route('/admin/logout', methods=['POST'])
    @swag_from({
        'tags': ['Admin'],
        'description': 'End the admin session',
        'responses': {'200': {'description': 'Logged out'}}
    })
    def admin_logout():
        auth.clear_admin_session()
        return jsonify({'status': 'success'})

    @app.route('/admin/session', methods=['GET'])
    @swag_from({
        'tags': ['Admin'],
        'description': 'Whether the caller holds a live admin session',
        'responses': {'200': {'description': 'Session state'}}
    })
    def admin_session():
        authenticated = auth.is_admin_authenticated()
        return jsonify({
            'authenticated': authenticated,
            'session': auth.get_session_info() if authenticated else None
        })

    @app.route('/admin/dashboard', methods=['GET'])
    @auth.admin_required
    @swag_from({
        'tags': ['Admin'],
        'description': 'Sales statistics, purchases (newest first) and live holds',
        'parameters': [
            {
                'name': 'ticket',
                'in': 'query',
                'type': 'string',
                'required': False,
                'description': 'Only purchases with a ticket number containing this text'
            }
        ],
        'security': [{'AdminSession': []}],
        'responses': {
            '200': {'description': 'Dashboard data'},
            '401': {'description': 'Admin login required', 'schema': ERROR_SCHEMA}
        }
    })
    def admin_dashboard():
        engine = get_engine()
        stats = engine.statistics()
        purchases = engine.list_purchases(request.args.get('ticket'))
        held = sorted(engine.classify().held)
        holds = [engine.get_hold_info(t) for t in held]
        return jsonify({
            'statistics': {
                key: str(value) if 'revenue' in key else value
                for key, value in stats.items()
            },
            'purchases': [serialize_purchase(p) for p in purchases],
            'holds': [serialize_hold_info(info) for info in holds if info is not None],
            'pricing': serialize_pricing(get_pricing().get_pricing())
        })

    @app.route('/admin/tickets/<int:ticket_number>/confirm', methods=['POST'])
    @auth.admin_required
    @swag_from({
        'tags': ['Admin'],
        'description': 'Mark a ticket as paid; it becomes permanently sold',
        'parameters': [TICKET_PARAM],
        'security': [{'AdminSession': []}],
        'responses': {
            '200': {'description': 'Payment confirmed', 'schema': PURCHASE_SCHEMA},
            '404': {'description': 'No purchase contains this ticket', 'schema': ERROR_SCHEMA}
        }
    })
    def confirm_ticket(ticket_number):
        purchase = get_engine().confirm_payment(parse_ticket(ticket_number))
        return jsonify({'status': 'success', 'purchase': serialize_purchase(purchase)})

    @app.route('/admin/tickets/<int:ticket_number>/release', methods=['POST'])
    @auth.admin_required
    @swag_from({
        'tags': ['Admin'],
        'description': 'Free a held ticket early. Sold tickets stay sold',
        'parameters': [TICKET_PARAM],
        'security': [{'AdminSession': []}],
        'responses': {'200': {'description': 'Hold released (or there was none)'}}
    })
    def release_ticket(ticket_number):
        released = get_engine().release_ticket(parse_ticket(ticket_number))
        return jsonify({'status': 'success', 'released': released})

    @app.route('/admin/holds/cleanup', methods=['POST'])
    @auth.admin_required
    @swag_from({
        'tags': ['Admin'],
        'description': 'Delete expired holds',
        'security': [{'AdminSession': []}],
        'responses': {'200': {'description': 'Number of holds removed'}}
    })
    def cleanup_holds():
        return jsonify({'status': 'success', 'removed': get_engine().cleanup_expired_holds()})

    @app.route('/admin/reset', methods=['POST'])
    @auth.admin_required
    @swag_from({
        'tags': ['Admin'],
        'description': 'Delete every purchase and hold. Pricing is kept. Irreversible',
        'security': [{'AdminSession': []}],
        'responses': {'200': {'description': 'System reset'}}
    })
    def reset_system():
        get_engine().reset_all()
        return jsonify({'status': 'success'})

    @app.route('/admin/pricing', methods=['PUT'])
    @auth.admin_required
    @swag_from({
        'tags': ['Admin', 'Pricing'],
        'description': 'Change the price per ticket for future purchases',
        'parameters': [
            {
                'name': 'body',
                'in': 'body',
                'required': True,
                'schema': {
                    'type': 'object',
                    'properties': {
                        'price': {'type': 'string', 'example': '7.50'},
                        'updated_by': {'type': 'string'}
                    }
                }
            }
        ],
        'security': [{'AdminSession': []}],
        'responses': {
            '200': {'description': 'Price updated'},
            '400': {'description': 'Invalid price', 'schema': ERROR_SCHEMA}
        }
    })
    def update_pricing():
        data = require_json()
        record = get_pricing().set_price(data.get('price'), data.get('updated_by') or 'Admin')
        return jsonify(serialize_pricing(record))

    @app.route('/admin/pricing', methods=['DELETE'])
    @auth.admin_required
    @swag_from({
        'tags': ['Admin', 'Pricing'],
        'description': 'Restore the default ticket price',
        'security': [{'AdminSession': []}],
        'responses': {'200': {'description': 'Price reset'}}
    })
    def reset_pricing():
        return jsonify(serialize_pricing(get_pricing().reset_pricing()))

    @app.route('/admin/pricing/history', methods=['GET'])
    @auth.admin_required
    @swag_from({
        'tags': ['Admin', 'Pricing'],
        'description': 'Price changes, newest first',
        'security': [{'AdminSession': []}],
        'responses': {'200': {'description': 'Price history'}}
    })
    def pricing_history():
        return jsonify([
            {
                'price': str(change.price),
                'previous_price': str(change.previous_price) if change.previous_price is not None else None,
                'changed_at': _timestamp(change.changed_at),
                'changed_by': change.changed_by
            }
            for change in get_pricing().history()
        ])


def generate_qr_code(purchase, base_url):
    qr_data = (
        f'{purchase.reference_id}|{purchase.total_cost}|'
        f'{base_url}/purchases/{purchase.reference_id}'
    )
    buffer = io.BytesIO()
    qrcode.make(qr_data).save(buffer)
    buffer.seek(0)
    return buffer


if __name__ == '__main__':
    app = create_app()
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)))
