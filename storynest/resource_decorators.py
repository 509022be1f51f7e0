'''Decorators exclusive to the StoryNest server'''
from functools import wraps
from flask import request, g
from werkzeug.exceptions import Unauthorized
from jwt.exceptions import PyJWTError, ExpiredSignatureError
from storynest.resource_auxillary import decode_access_token, ACCESS_COOKIE

def token_required(endpoint):
    '''
    Protect an endpoint by validating the access token held in the "access" cookie.
    Furthermore, sets global data (flask.g.DECODED_TOKEN : _AppCtxGlobals) for usage of token details in the decorated endpoint
    '''
    @wraps(endpoint)
    def decorated(*args, **kwargs):
        encodedAccessToken: str = request.cookies.get(ACCESS_COOKIE)
        if not encodedAccessToken:
            raise Unauthorized("Authentication required")

        try:
            g.DECODED_TOKEN = decode_access_token(encodedAccessToken)
        except ExpiredSignatureError:
            raise Unauthorized("JWT token expired, please login again")
        except PyJWTError:
            raise Unauthorized("JWT token invalid")

        return endpoint(*args, **kwargs)
    return decorated

def pass_user_details(endpoint):
    '''
    Pass user details by parsing the access token, if any.
    Sets global data (flask.g.REQUESTING_USER : _AppCtxGlobals), falling back to None on a missing or unusable token
    '''
    @wraps(endpoint)
    def decorated(*args, **kwargs):
        g.REQUESTING_USER = None
        encodedAccessToken: str = request.cookies.get(ACCESS_COOKIE)
        if encodedAccessToken:
            try:
                g.REQUESTING_USER = decode_access_token(encodedAccessToken)
            except PyJWTError:
                pass

        return endpoint(*args, **kwargs)
    return decorated
