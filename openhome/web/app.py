"""
OpenHome: Flask API over the X/Y box reader.

Routes:
  GET  /health
  GET  /api/saves                                  list uploaded saves
  POST /api/saves                                  upload (multipart "files")
  GET  /api/saves/<id>/detect                      format detection
  GET  /api/saves/<id>/boxes                       box grid (?offset= / ?hint=)
  GET  /api/saves/<id>/boxes/<box>/<slot>/export   raw .pk6 (1-based box/slot)
  GET  /api/debug/xy/<id>/scan                     ranked region candidates
  POST /api/debug/xy/<id>/autofix                  autopick around a hint
  POST /api/debug/xy/<id>/offset                   pin the region offset
"""

import os
import logging
import secrets
from datetime import datetime
from typing import Dict, Optional, Any

from flask import Flask, Response, request, jsonify, current_app
from flask_cors import CORS

from ..core.pk6 import decode_record_file
from ..features.box_reader import ExportStatus, read_boxes, export_slot
from ..features.detect import detect_format, is_xy_save, parse_offset
from ..features.region_scanner import (
    DEFAULT_REGION_HINT, auto_pick_offset, scan_candidates,
)
from .storage import SaveStore

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def _error(message: str, status: int):
    return jsonify({"success": False, "error": message}), status


def _store() -> SaveStore:
    return current_app.config['SAVE_STORE']


def _load(save_id: str) -> Optional[bytes]:
    return _store().read(save_id)


def create_app(config: Optional[Dict[str, Any]] = None) -> Flask:
    """Build the Flask app. `config` overrides environment-derived settings."""
    app = Flask(__name__)
    app.config['SECRET_KEY'] = os.environ.get('OPENHOME_SECRET_KEY', secrets.token_urlsafe(32))
    app.config['SAVES_DIR']  = os.environ.get('OPENHOME_SAVES_DIR')
    app.config['META_DIR']   = os.environ.get('OPENHOME_META_DIR')
    if config:
        app.config.update(config)
    if 'SAVE_STORE' not in app.config:
        app.config['SAVE_STORE'] = SaveStore(app.config['SAVES_DIR'], app.config['META_DIR'])

    # Enable CORS for API endpoints
    CORS(app, resources={r"/api/*": {"origins": "*"}})

    # ── Health ─────────────────────────────────────────────────────────────────

    @app.route("/health")
    def health_check():
        return jsonify({
            "status": "ok",
            "version": VERSION,
            "timestamp": datetime.utcnow().isoformat() + "Z",
        })

    # ── Saves ──────────────────────────────────────────────────────────────────

    @app.route("/api/saves", methods=["GET"])
    def api_list_saves():
        return jsonify(_store().list_saves())

    @app.route("/api/saves", methods=["POST"])
    def api_upload_saves():
        files = request.files.getlist("files")
        if not files:
            return _error("No file provided", 400)
        uploaded = [_store().add(f.filename, f.read()) for f in files]
        return jsonify({"success": True, "uploaded": uploaded}), 201

    @app.route("/api/saves/<save_id>/detect")
    def api_detect(save_id):
        blob = _load(save_id)
        if blob is None:
            return _error("Save not found", 404)
        info = detect_format(blob, save_id).to_dict()
        info["xy_size_match"] = is_xy_save(blob)
        if info["kind"] == "single-pokemon":
            record = decode_record_file(blob)
            info["record"] = record.to_dict() if record else None
        return jsonify(info)

    @app.route("/api/saves/<save_id>/boxes")
    def api_boxes(save_id):
        blob = _load(save_id)
        if blob is None:
            return _error("Save not found", 404)

        override = parse_offset(request.args.get("offset"))
        hint = parse_offset(request.args.get("hint"))
        # A pinned offset only applies when the request names no location.
        if override is None and hint is None:
            override = parse_offset(_store().read_meta(save_id).get("xy_offset"))

        grid = read_boxes(blob, override=override, hint=hint)
        return jsonify(grid.to_dict())

    @app.route("/api/saves/<save_id>/boxes/<int:box>/<int:slot>/export")
    def api_export(save_id, box, slot):
        blob = _load(save_id)
        if blob is None:
            return _error("Save not found", 404)

        offset = parse_offset(request.args.get("offset"))
        if offset is None:
            offset = parse_offset(_store().read_meta(save_id).get("xy_offset"))
        if offset is None:
            grid = read_boxes(blob)
            offset = grid.offset
        if offset is None:
            return _error("XY region not found", 404)

        result = export_slot(blob, offset, box - 1, slot - 1)
        if result.status == ExportStatus.OUT_OF_RANGE:
            return _error("Slot is out of range", 416)
        if result.status == ExportStatus.NO_CONTENT:
            return _error("Slot is empty", 404)

        filename = f"box{box:02d}-slot{slot:02d}.pk6"
        return Response(
            result.data,
            mimetype="application/octet-stream",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )

    # ── Region Debugging ───────────────────────────────────────────────────────

    @app.route("/api/debug/xy/<save_id>/scan")
    def api_scan(save_id):
        blob = _load(save_id)
        if blob is None:
            return _error("Save not found", 404)
        candidates = scan_candidates(blob)
        return jsonify({"candidates": [c.to_dict() for c in candidates]})

    @app.route("/api/debug/xy/<save_id>/autofix", methods=["POST"])
    def api_autofix(save_id):
        blob = _load(save_id)
        if blob is None:
            return _error("Save not found", 404)
        data = request.get_json(silent=True) or {}

        hint = DEFAULT_REGION_HINT
        if data.get("hint") is not None:
            hint = parse_offset(data.get("hint"))
            if hint is None:
                return _error(f"Invalid hint: {data.get('hint')!r}", 400)

        picked = auto_pick_offset(blob, hint)
        if picked.best is None:
            return jsonify({"success": False, "error": "XY region not found", **picked.to_dict()})
        if data.get("save", True):
            _store().update_meta(save_id, xy_offset=picked.best.offset)
        return jsonify({"success": True, **picked.to_dict()})

    @app.route("/api/debug/xy/<save_id>/offset", methods=["POST"])
    def api_set_offset(save_id):
        if not _store().exists(save_id):
            return _error("Save not found", 404)
        data = request.get_json(silent=True) or {}
        if data.get("offset") in (None, ""):
            meta = _store().update_meta(save_id, xy_offset=None)
            return jsonify({"success": True, "meta": meta})

        offset = parse_offset(data.get("offset"))
        if offset is None:
            return _error(f"Invalid offset: {data.get('offset')!r}", 400)
        meta = _store().update_meta(save_id, xy_offset=offset)
        logger.info(f"Pinned XY offset for {save_id}: 0x{offset:X}")
        return jsonify({"success": True, "meta": meta})

    # ── Error Handlers ─────────────────────────────────────────────────────────

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Endpoint not found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal error: {error}")
        return jsonify({'error': 'Internal server error'}), 500

    return app


def main():
    logging.basicConfig(level=logging.INFO)
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", 8080))
    debug = os.environ.get("DEBUG", "False").lower() == "true"
    logger.info(f"Starting OpenHome on {host}:{port} (debug={debug})")
    create_app().run(debug=debug, host=host, port=port)


if __name__ == '__main__':
    main()
