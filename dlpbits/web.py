"""
Small Flask front panel for the loader.

Run with ``flask --app dlpbits.web run`` or ``python -m dlpbits.web``. The
panel keeps one extracted record list in memory and drives one upload batch
at a time against the configured analyzer.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from flask import Flask, jsonify, render_template, request

from .config import DEFAULT_CONFIG_NAME, LoaderConfig, load_config
from .driver import open_transport, preview
from .errors import DLPError, TransportFailed
from .image import decode_image
from .segment import extract_records
from .transport import clear_mass_memory
from .ui import TEMPLATES_DIR
from .upload import BatchState, UploadSequencer

logger = logging.getLogger(__name__)

app = Flask(__name__, template_folder=str(TEMPLATES_DIR))


@dataclass
class PanelState:
    config: LoaderConfig = field(default_factory=LoaderConfig)
    records: Optional[List[bytes]] = None
    image_name: Optional[str] = None
    busy: threading.Lock = field(default_factory=threading.Lock)

    def reset(self, config: Optional[LoaderConfig] = None) -> None:
        self.config = config if config is not None else LoaderConfig()
        self.records = None
        self.image_name = None


STATE = PanelState()


def record_rows() -> List[dict]:
    rows = []
    for index, record in enumerate(STATE.records or [], start=1):
        rows.append(
            {
                "index": index,
                "length": len(record),
                "preview": preview(record, STATE.config.encoding),
            }
        )
    return rows


def outcome_json(outcome) -> dict:
    return {
        "index": outcome.index,
        "outcome": outcome.kind.value,
        "code": outcome.code,
        "detail": outcome.detail,
    }


@app.get("/")
def index():
    return render_template(
        "index.html",
        address=STATE.config.gpib_address,
        image_read=STATE.records is not None,
        records=record_rows(),
    )


@app.get("/api/status")
def get_status():
    return jsonify(
        {
            "gpib_address": STATE.config.gpib_address,
            "resource": STATE.config.resource_name(),
            "image": STATE.image_name,
            "image_read": STATE.records is not None,
            "parts": len(STATE.records or []),
            "busy": STATE.busy.locked(),
        }
    )


@app.post("/api/image")
def post_image():
    """Decode an uploaded raw SRAM image and keep its records.

    Accepts a multipart file upload with field name 'file', or the raw body.
    """
    name = "(request body)"
    if "file" in request.files:
        upload = request.files["file"]
        name = upload.filename or name
        data = upload.read()
    else:
        data = request.get_data()

    if not data:
        return jsonify({"error": "no image data provided"}), 400

    try:
        decoded = decode_image(data)
    except DLPError as exc:
        STATE.records = None
        STATE.image_name = None
        return jsonify({"error": str(exc)}), 400

    STATE.records = extract_records(decoded, STATE.config.start_marker, STATE.config.end_marker)
    STATE.image_name = name
    logger.info("Panel read %s: %d part(s)", name, len(STATE.records))
    return jsonify({"image": name, "bytes": len(data), "parts": len(STATE.records)})


@app.get("/api/records")
def get_records():
    return jsonify({"records": record_rows()})


@app.post("/api/upload")
def post_upload():
    if not STATE.records:
        return jsonify({"error": "no parts available; read an image first"}), 400
    if not STATE.busy.acquire(blocking=False):
        return jsonify({"error": "an upload is already running"}), 409

    try:
        try:
            transport = open_transport(STATE.config)
        except TransportFailed as exc:
            return jsonify({"error": str(exc)}), 502
        try:
            result = UploadSequencer(transport, encoding=STATE.config.encoding).run(STATE.records)
        finally:
            transport.close()
    finally:
        STATE.busy.release()

    status = 200 if result.state is BatchState.COMPLETED else 502
    return (
        jsonify(
            {
                "state": result.state.value,
                "completed": result.completed,
                "total": result.total,
                "outcomes": [outcome_json(outcome) for outcome in result.outcomes],
            }
        ),
        status,
    )


@app.post("/api/clear")
def post_clear():
    payload = request.get_json(silent=True) or {}
    if payload.get("confirm") is not True:
        return jsonify({"error": "clearing mass memory requires {\"confirm\": true}"}), 400
    try:
        transport = open_transport(STATE.config)
    except TransportFailed as exc:
        return jsonify({"error": str(exc)}), 502
    try:
        clear_mass_memory(transport)
    except TransportFailed as exc:
        return jsonify({"error": str(exc)}), 502
    finally:
        transport.close()
    return jsonify({"sent": "DISPOSE ALL", "verified": False})


if __name__ == "__main__":
    config, _loaded = load_config(Path(DEFAULT_CONFIG_NAME))
    STATE.reset(config)
    app.run(debug=False)
