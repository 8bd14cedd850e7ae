import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from ...errors import CaseDeskError
from ...extensions import db
from . import errors_bp

log = logging.getLogger(__name__)


# Domain errors: 400 / 404 / 409 with the error's own payload
@errors_bp.app_errorhandler(CaseDeskError)
def err_domain(e: CaseDeskError):
    return jsonify(e.to_dict()), e.status_code

# 404 – Not Found
@errors_bp.app_errorhandler(404)
def err_404(e):
    return jsonify(error="Not found", code="not_found", path=request.path), 404

# Fallback for uncaught HTTPException (401, 403, 405, ...)
@errors_bp.app_errorhandler(HTTPException)
def err_http(e: HTTPException):
    return jsonify(error=e.description, code=e.name.lower().replace(" ", "_")), e.code

# Last-resort: any other Exception
@errors_bp.app_errorhandler(Exception)
def err_unexpected(e):
    # if a DB action caused this, rollback so the session isn't stuck in a bad transaction
    db.session.rollback()
    log.exception("Unhandled error on %s %s", request.method, request.path)
    # Don't leak internals
    return jsonify(error="Internal server error", code="internal_error"), 500
