# Overview: Flask API routes for storage locations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..decorators import json_body, handle_service_errors
from ..services import location_service


locations_bp = Blueprint("locations", __name__, url_prefix="/api/locations")


@locations_bp.get("")
@handle_service_errors("list locations")
def list_locations_route():
    only_free = str(request.args.get("free") or "").lower() in {"1", "true", "yes"}
    locations = location_service.list_locations(only_free=only_free)
    return jsonify({"locations": [loc.to_dict() for loc in locations], "count": len(locations)})


@locations_bp.post("")
@handle_service_errors("create location")
def create_location_route():
    data = json_body()
    location = location_service.create_location(
        location_id=data.get("id"),
        capacity_pallets=data.get("capacity_pallets"),
        location_type=data.get("location_type"),
        aisle=data.get("aisle"),
        rack=data.get("rack"),
        level=data.get("level"),
    )
    return jsonify({"location": location.to_dict()}), 201
