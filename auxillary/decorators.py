from functools import wraps
from flask import request, g
from werkzeug.exceptions import BadRequest

def enforce_json(endpoint):
    '''Parse the request body into g.REQUEST_JSON, which is always a dict for the wrapped view.
    Field validation is left to the view so that missing fields get endpoint-specific messages'''
    @wraps(endpoint)
    def decorated(*args, **kwargs):
        if not request.is_json:
            raise BadRequest("Content-Type must be application/json")
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            err = BadRequest("Request body must be a JSON object")
            err.kwargs = {"details" : "Expected a JSON object such as {\"field\": \"value\"}, received malformed JSON or a non-object value"}
            raise err
        g.REQUEST_JSON = body
        return endpoint(*args, **kwargs)
    return decorated
