from flask import Blueprint

mortuary_bp = Blueprint("mortuary", __name__, url_prefix="/api")

from mortuorio.mortuary import routes  # noqa: E402,F401
