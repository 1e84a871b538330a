from flask import jsonify
from review_engine.errors import ConflictError, NotFoundError, PreconditionError, ReviewEngineError


def error_response(error: ReviewEngineError):
    """JSON body and status code for an engine error"""
    if isinstance(error, NotFoundError):
        status = 404
    elif isinstance(error, PreconditionError):
        status = 400
    elif isinstance(error, ConflictError):
        status = 409
    else:
        status = 500
    return jsonify(error.to_dict()), status
