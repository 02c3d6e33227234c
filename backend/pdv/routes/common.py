# Overview: Helpers shared by the operation routes.

from flask import jsonify, request

from ..errors import ServiceError
from ..validation import ValidationError


def request_payload() -> dict:
    """
    Merge query parameters and the JSON body into one mapping.

    The action discriminator itself is dropped; body fields win over
    query parameters with the same name.
    """
    data = {key: value for key, value in request.args.items() if key != "action"}
    if request.method == "GET":
        return data

    body = request.get_json(silent=True)
    if body is None:
        if request.get_data():
            raise ValidationError("Invalid JSON payload")
        return data
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON payload")
    data.update(body)
    return data


def error_response(exc: ServiceError):
    return jsonify(exc.to_dict()), exc.status_code
