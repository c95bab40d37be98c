# Overview: Flask API routes for member imports; parses input and returns JSON responses.

"""
Import Routes

Supports CSV, JSON, and Excel (.xlsx) uploads, or rows posted as JSON.
"""

import csv
import io
import json

from flask import Blueprint, request, jsonify, g, current_app
from openpyxl import load_workbook

from ..decorators import require_auth, require_admin
from ..services import import_service
from ..services.import_service import MemberImportError


imports_bp = Blueprint("imports", __name__, url_prefix="/api/admin/imports")


def _rows_from_upload(file) -> list[dict]:
    filename = file.filename or ""
    ext = filename.split(".")[-1].lower()

    if ext == "csv":
        stream = io.StringIO(file.stream.read().decode("utf-8-sig"))
        return [row for row in csv.DictReader(stream)]
    if ext == "json":
        rows = json.load(file.stream)
        if isinstance(rows, dict):
            rows = rows.get("rows", [])
        return rows
    if ext in {"xlsx", "xlsm", "xltx", "xltm"}:
        wb = load_workbook(file.stream, data_only=True)
        sheet = wb.active
        data = list(sheet.values)
        if not data:
            return []
        headers = [str(h) if h is not None else "" for h in data[0]]
        return [
            {headers[i]: row[i] for i in range(len(headers))}
            for row in data[1:]
            if any(cell is not None for cell in row)
        ]
    raise MemberImportError("Unsupported file format")


@imports_bp.post("/members")
@require_auth
@require_admin
def import_members_route():
    """
    Either a multipart upload (field "file") or a JSON body {"rows": [...]}.

    Returns {total_rows, success_count, skipped_count, created_users, errors}.
    """
    try:
        if "file" in request.files:
            rows = _rows_from_upload(request.files["file"])
        else:
            data = request.get_json(silent=True) or {}
            rows = data.get("rows")
        if not isinstance(rows, list):
            return jsonify({"error": "rows must be a list"}), 400
    except MemberImportError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to parse member import upload")
        return jsonify({"error": "Failed to parse upload"}), 400

    try:
        result = import_service.import_members(rows, actor_user_id=g.current_user.id)
    except MemberImportError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to import members")
        return jsonify({"error": "Internal server error"}), 500

    current_app.logger.info(
        "Member import by user %s: %s/%s rows imported, %s errors",
        g.current_user.id, result.success_count, result.total_rows, len(result.errors),
    )
    return jsonify(result.to_dict()), 201


@imports_bp.post("/legacy-memberships")
@require_auth
@require_admin
def create_legacy_memberships_route():
    """
    Request body:
    - memberships: [{membership_type_id, start_time, end_time}, ...]
    """
    data = request.get_json(silent=True) or {}
    try:
        rows = import_service.create_legacy_memberships(
            data.get("memberships"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"memberships": [m.to_dict() for m in rows], "count": len(rows)}), 201
    except MemberImportError as e:
        return jsonify({"error": str(e)}), 400
