"""Helpers shared by the JSON API blueprints."""
from flask import abort, current_app, jsonify, request
from werkzeug.datastructures import MultiDict


def _flatten(value, key, formdata):
    if value is None:
        return
    if isinstance(value, dict):
        for child_key, child_value in value.items():
            _flatten(child_value, f'{key}-{child_key}' if key else child_key, formdata)
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _flatten(item, f'{key}-{index}', formdata)
    elif isinstance(value, bool):
        # BooleanField treats 'false' as unchecked
        formdata.add(key, 'y' if value else 'false')
    else:
        formdata.add(key, str(value))


def json_to_formdata(payload):
    """
    Flatten a JSON object into WTForms form data.

    Nested lists become FieldList names, so
    {'lines': [{'quantity': 2}]} turns into lines-0-quantity=2.
    None values are left out and read as missing.
    """
    formdata = MultiDict()
    _flatten(payload, '', formdata)
    return formdata


def get_json_payload():
    """Request body as a dict, or abort with 400."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        abort(400, description='Request body must be a JSON object')
    return payload


def error_response(message, status_code=400, errors=None):
    body = {'success': False, 'message': message}
    if errors is not None:
        body['errors'] = errors
    return jsonify(body), status_code


def form_errors_response(form):
    return error_response('Validation failed', 400, errors=form.errors)


def parse_pagination():
    """Read limit/offset from the query string, clamped to configured bounds."""
    default_limit = current_app.config['PAGINATION_DEFAULT_LIMIT']
    max_limit = current_app.config['PAGINATION_MAX_LIMIT']

    limit = request.args.get('limit', default_limit, type=int)
    offset = request.args.get('offset', 0, type=int)

    limit = max(1, min(limit, max_limit))
    offset = max(0, offset)
    return limit, offset


def paginate(query, limit, offset, serialize=None):
    """Run a paginated query; returns the response body as a dict."""
    total = query.count()
    items = query.limit(limit).offset(offset).all()
    serialize = serialize or (lambda item: item.to_dict())
    return {
        'success': True,
        'data': [serialize(item) for item in items],
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'has_more': offset + len(items) < total
        }
    }


def paginated_response(query, limit, offset, serialize=None):
    """Run a paginated query and wrap the rows with paging metadata."""
    return jsonify(paginate(query, limit, offset, serialize))
