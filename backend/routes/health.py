"""
Health route - public, always 200; degradation is reported in the body.
"""
from flask import Blueprint

from api.contracts import api_contract
from api.extension import get_state
from api.serializers import map_health
from services.health import health_report

health_bp = Blueprint('health', __name__)


@health_bp.route("/health", methods=["GET"])
@api_contract("getHealth")
def get_health():
    state = get_state()
    return map_health(health_report(state.migrations), state.bindings, state.contracts.version)
