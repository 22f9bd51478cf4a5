"""
Things API Routes

Handlers only translate: validated binding in, service call, mapped binding
out. Ownership and visibility rules live in services.thing_service.
"""
from flask import Blueprint

from api.contracts import api_contract
from api.extension import get_state
from api.serializers import Paginated, map_thing
from db.session import request_session
from services.thing_service import DEFAULT_PAGE_SIZE, ThingService

things_bp = Blueprint('things', __name__)


def _service() -> ThingService:
    return ThingService(request_session())


def _mapped(thing):
    state = get_state()
    return map_thing(thing, state.bindings, state.cdn_base_url)


@things_bp.route("/things", methods=["POST"])
@api_contract("createThing")
def create_thing(body, identity):
    thing = _service().create(
        identity,
        name=body.name,
        description=body.description,
        image_key=body.image_key,
    )
    return _mapped(thing)


@things_bp.route("/things", methods=["GET"])
@api_contract("listThings")
def list_things(query, identity):
    page = query.page or 1
    limit = query.limit or DEFAULT_PAGE_SIZE
    things, total = _service().list(identity, page=page, limit=limit)
    return Paginated(items=[_mapped(t) for t in things], page=page, limit=limit, total=total)


@things_bp.route("/things/<thing_id>", methods=["GET"])
@api_contract("getThing")
def get_thing(thing_id, identity):
    return _mapped(_service().get(identity, thing_id))


@things_bp.route("/things/<thing_id>", methods=["PATCH"])
@api_contract("updateThing")
def update_thing(thing_id, body, identity):
    thing = _service().update(identity, thing_id, body.model_dump(exclude_unset=True))
    return _mapped(thing)


@things_bp.route("/things/<thing_id>", methods=["DELETE"])
@api_contract("deleteThing")
def delete_thing(thing_id, identity):
    _service().delete(identity, thing_id)
