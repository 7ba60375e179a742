"""
Legacy attendance blueprint: matrix preview/commit and identity mapping APIs.
"""

from __future__ import annotations

from http import HTTPStatus

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from flask_app.utils.importer import is_legacy_import_enabled
from flask_app.utils.permissions import MANAGE_LEGACY_ATTENDANCE, has_permission

from .pipeline import (
    AbortedStaleConflict,
    IdentityNotFound,
    IdentityResolver,
    IncompleteResolutionError,
    LegacyImportError,
    LegacyImportService,
    MappingGroupNotFound,
    ParseError,
    PersistenceError,
    UnverifiedResolutionError,
    parse_resolutions,
)

legacy_import_blueprint = Blueprint("legacy_import", __name__, url_prefix="/api/attendance")


def _json_error(message: str, status: HTTPStatus, **extra):
    payload = {"error": message}
    payload.update(extra)
    return jsonify(payload), status


def _ensure_legacy_import_enabled_api():
    if not is_legacy_import_enabled(current_app):
        return _json_error("Legacy import is disabled.", HTTPStatus.NOT_FOUND)
    return None


def _ensure_authenticated_api():
    if not current_user.is_authenticated:
        return _json_error("Authentication required.", HTTPStatus.UNAUTHORIZED)
    return None


def _ensure_manage_permission():
    if not has_permission(current_user, MANAGE_LEGACY_ATTENDANCE):
        return _json_error("Super admin privileges required.", HTTPStatus.FORBIDDEN)
    return None


def _guard_request():
    for check in (_ensure_legacy_import_enabled_api, _ensure_authenticated_api, _ensure_manage_permission):
        response = check()
        if response:
            return response
    return None


def _parse_bool_arg(value: str | None) -> bool | None:
    if value is None or value.strip() == "":
        return None
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value '{value}'.")


def _parse_bool_flag(value: object, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    parsed = _parse_bool_arg(str(value))
    return default if parsed is None else parsed


@legacy_import_blueprint.post("/legacy-import")
def legacy_import():
    """
    Preview or commit a pasted legacy attendance matrix.

    Body: ``{csvData, previewOnly, resolutions?, previewToken?}``. A commit that
    carries resolutions needs the ``previewToken`` of the reviewed preview or an
    ``existingStatus`` on every resolution.
    """
    guard = _guard_request()
    if guard:
        return guard

    payload = request.get_json(silent=True) or {}
    csv_data = payload.get("csvData")
    if not isinstance(csv_data, str) or not csv_data.strip():
        return _json_error("Missing csvData.", HTTPStatus.BAD_REQUEST)

    try:
        preview_only = _parse_bool_flag(payload.get("previewOnly"), default=True)
        resolutions = parse_resolutions(payload.get("resolutions"))
    except ValueError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    service = LegacyImportService()
    try:
        if preview_only:
            return jsonify(service.preview(csv_data).to_dict()), HTTPStatus.OK
        result = service.commit(
            csv_data,
            resolutions,
            user_id=current_user.id,
            preview_token=payload.get("previewToken") or None,
        )
    except ParseError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)
    except UnverifiedResolutionError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST, unverified=[key.as_token() for key in exc.keys])
    except IncompleteResolutionError as exc:
        return _json_error(
            str(exc),
            HTTPStatus.CONFLICT,
            hasConflicts=True,
            missing=[key.as_token() for key in exc.missing],
            extra=[key.as_token() for key in exc.extra],
            conflicts=[entry.to_dict() for entry in exc.conflicts],
        )
    except AbortedStaleConflict as exc:
        current_app.logger.warning(
            "Legacy import aborted: stored attendance changed since preview",
            extra={"legacy_import_stale": list(exc.stale), "user_id": current_user.id},
        )
        return _json_error(str(exc), HTTPStatus.CONFLICT, stale=list(exc.stale))
    except PersistenceError as exc:
        current_app.logger.exception("Legacy import commit failed.", exc_info=exc)
        return _json_error(str(exc), HTTPStatus.INTERNAL_SERVER_ERROR)
    except LegacyImportError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    current_app.logger.info(
        "Legacy attendance import committed",
        extra={
            "legacy_import_run_id": result.run_id,
            "legacy_import_inserted": result.imported,
            "legacy_import_updated": result.updated,
            "user_id": current_user.id,
        },
    )
    return jsonify(result.to_dict()), HTTPStatus.OK


@legacy_import_blueprint.get("/legacy-data")
def legacy_data_list():
    """List mapping groups, optionally filtered by ``search`` and ``isMapped``."""
    guard = _guard_request()
    if guard:
        return guard

    try:
        is_mapped = _parse_bool_arg(request.args.get("isMapped"))
    except ValueError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    groups = IdentityResolver().list_groups(search=request.args.get("search"), is_mapped=is_mapped)
    return jsonify({"groups": [group.to_dict() for group in groups], "total": len(groups)}), HTTPStatus.OK


@legacy_import_blueprint.put("/legacy-data")
def legacy_data_update_mapping():
    """Map a legacy identity group onto an account, or clear it with ``mappedUserId: null``."""
    guard = _guard_request()
    if guard:
        return guard

    payload = request.get_json(silent=True) or {}
    legacy_identity = payload.get("legacyIdentity")
    if not isinstance(legacy_identity, str) or not legacy_identity.strip():
        return _json_error("Missing legacyIdentity.", HTTPStatus.BAD_REQUEST)
    if "mappedUserId" not in payload:
        return _json_error("Missing mappedUserId (use null to clear the mapping).", HTTPStatus.BAD_REQUEST)

    mapped_user_id = payload.get("mappedUserId")
    if mapped_user_id is not None:
        try:
            mapped_user_id = int(mapped_user_id)
        except (TypeError, ValueError):
            return _json_error("mappedUserId must be an integer or null.", HTTPStatus.BAD_REQUEST)

    resolver = IdentityResolver()
    try:
        if mapped_user_id is None:
            result = resolver.clear_mapping(legacy_identity)
        else:
            result = resolver.propose_mapping(legacy_identity, mapped_user_id)
    except (IdentityNotFound, MappingGroupNotFound) as exc:
        return _json_error(str(exc), HTTPStatus.NOT_FOUND)
    except PersistenceError as exc:
        current_app.logger.exception("Legacy identity mapping failed.", exc_info=exc)
        return _json_error(str(exc), HTTPStatus.INTERNAL_SERVER_ERROR)

    current_app.logger.info(
        "Legacy identity mapping updated",
        extra={
            "legacy_identity": legacy_identity,
            "legacy_mapped_user_id": mapped_user_id,
            "legacy_records_updated": result.records_updated,
            "user_id": current_user.id,
        },
    )
    return jsonify(result.to_dict()), HTTPStatus.OK
