from functools import wraps

from flask import current_app, jsonify, request
from flask_login import current_user
from werkzeug.datastructures import MultiDict
from werkzeug.exceptions import HTTPException

from petcare.scheduling.errors import SchedulingError, ValidationFailed


def get_engine():
    return current_app.extensions['scheduling']


def error_response(code, message, status_code, details=None):
    return jsonify({'error': {'code': code, 'message': message, 'details': details or {}}}), status_code


def flatten_json(data, prefix=''):
    """Flatten a JSON document into WTForms field names, e.g. tentative-0-staff_id"""
    items = []
    if isinstance(data, dict):
        for key, value in data.items():
            items.extend(flatten_json(value, f'{prefix}-{key}' if prefix else key))
    elif isinstance(data, list):
        for position, value in enumerate(data):
            items.extend(flatten_json(value, f'{prefix}-{position}'))
    elif isinstance(data, bool):
        items.append((prefix, 'y' if data else ''))
    elif data is not None:
        items.append((prefix, str(data)))
    return items


def _validated(form):
    if not form.validate():
        raise ValidationFailed('Invalid request', details={'fields': form.errors})
    return form


def form_from_json(form_cls):
    """Build and validate a form from the JSON request body"""
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationFailed('Request body must be a JSON object')
    return _validated(form_cls(formdata=MultiDict(flatten_json(payload))))


def form_from_args(form_cls):
    """Build and validate a form from the query string"""
    return _validated(form_cls(formdata=request.args))


def form_payload(form):
    """Submitted values only; fields left out of the request are dropped"""
    return {name: value for name, value in form.data.items() if value not in (None, '', [])}


def manager_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated or not current_user.is_manager():
            return error_response('FORBIDDEN', 'Managers only', 403)
        return f(*args, **kwargs)
    return decorated_function


def register_error_handlers(app):
    @app.errorhandler(SchedulingError)
    def handle_scheduling_error(error):
        if error.status_code >= 500:
            app.logger.error(f"{error.code}: {error.message}")
        else:
            app.logger.info(f"{error.code}: {error.message}")
        return jsonify({'error': error.to_dict()}), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        code = (error.name or 'error').upper().replace(' ', '_')
        return error_response(code, error.description, error.code)

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        app.logger.exception(f"Unhandled error on {request.method} {request.path}")
        return error_response('INTERNAL_ERROR', 'An unexpected error occurred', 500)
