"""HTTP boundary: link management API, QR rendering and the public redirect."""

import io

from flask import Flask, jsonify, redirect, request, send_file

from artqr.compositor import render_link_qr
from artqr.config import Settings
from artqr.errors import ImageDecodeError, InvalidInput, NotFound, PayloadTooLong, StorageError
from artqr.gate import FreemiumGate, ProStatus
from artqr.logging import audit, get_logger
from artqr.registry import LinkRegistry, LinkSummary, ScanEvent, ShortLink
from artqr.shorturl import build_short_url

log = get_logger("server")

PURCHASE_COMPLETED = "checkout.session.completed"


def _iso(dt) -> str:
    return dt.isoformat().replace("+00:00", "Z")


def _link_json(link: ShortLink, short_url: str) -> dict:
    return {
        "id": link.id,
        "targetUrl": link.target_url,
        "shortUrl": short_url,
        "createdAt": _iso(link.created_at),
    }


def _scan_json(scan: ScanEvent) -> dict:
    return {
        "id": scan.id,
        "linkId": scan.link_id,
        "scannedAt": _iso(scan.scanned_at),
        "userAgent": scan.user_agent,
    }


def create_app(registry: LinkRegistry, pro_status: ProStatus, settings: Settings | None = None) -> Flask:
    """Build the Flask app around an already-initialised registry."""
    settings = settings or Settings()
    gate = FreemiumGate(registry, pro_status, visible_limit=settings.free_link_limit)

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = settings.max_upload_bytes

    def short_url(link_id: str) -> str:
        return build_short_url(settings.base_url, link_id, settings.short_path)

    def summary_json(summary: LinkSummary) -> dict:
        return {**_link_json(summary.link, short_url(summary.link.id)), "scanCount": summary.scan_count}

    # --- errors ---

    def _error(status: int, message: str):
        return jsonify({"error": message}), status

    @app.errorhandler(InvalidInput)
    def invalid_input(exc):
        return _error(400, str(exc))

    @app.errorhandler(NotFound)
    def not_found(exc):
        return _error(404, "Link not found")

    @app.errorhandler(ImageDecodeError)
    @app.errorhandler(PayloadTooLong)
    def generation_failed(exc):
        audit("render.failed", logger=log, error=str(exc))
        return _error(422, str(exc))

    @app.errorhandler(StorageError)
    def storage_failed(exc):
        log.error("Storage failure: %s", exc)
        return _error(500, "Internal storage error")

    # --- links ---

    @app.post("/api/links")
    def create_link():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            raise InvalidInput("Expected a JSON object with targetUrl")
        link = registry.create_link(body.get("targetUrl"))
        return jsonify(_link_json(link, short_url(link.id))), 201

    @app.get("/api/links")
    def list_links():
        listing = gate.list_links()
        return jsonify({
            "isPro": listing.is_pro,
            "links": [summary_json(s) for s in listing.links],
            "totalCount": listing.total_count,
            "hiddenCount": listing.hidden_count,
        })

    @app.delete("/api/links/<link_id>")
    def delete_link(link_id):
        if not registry.delete_link(link_id):
            raise NotFound(link_id)
        return jsonify({"success": True})

    @app.get("/api/analytics/<link_id>")
    def analytics(link_id):
        detail = registry.get_detail(link_id)
        return jsonify({
            "link": _link_json(detail.link, short_url(detail.link.id)),
            "scans": [_scan_json(s) for s in detail.scans],
            "chartData": [{"date": d.date, "count": d.count} for d in detail.per_date_counts],
        })

    @app.post("/api/links/<link_id>/qr")
    def render_qr(link_id):
        link = registry.get_link(link_id)
        upload = request.files.get("image")
        image_bytes = upload.read() if upload is not None else request.get_data()
        if not image_bytes:
            raise InvalidInput("An 'image' upload is required")
        png = render_link_qr(image_bytes, short_url(link.id), size=settings.output_size)
        return send_file(io.BytesIO(png), mimetype="image/png", download_name=f"artqr-{link.id}.png")

    # --- pro status ---

    @app.get("/api/pro-status")
    def get_pro_status():
        return jsonify({"isPro": pro_status.is_pro()})

    @app.post("/api/webhook")
    def purchase_webhook():
        event = request.get_json(silent=True) or {}
        if event.get("type") == PURCHASE_COMPLETED:
            pro_status.unlock()
        else:
            log.info("Ignoring webhook event type %r", event.get("type"))
        return jsonify({"received": True})

    # --- public redirect ---

    @app.get(f"/{settings.short_path.strip('/')}/<link_id>")
    def follow_short_link(link_id):
        target = registry.resolve_link(link_id, user_agent=request.headers.get("User-Agent"))
        return redirect(target, code=302)

    return app


def build_app(settings: Settings | None = None) -> Flask:
    """Wire database, registry and pro status from settings."""
    from artqr.database import create_db_engine, init_db

    settings = settings or Settings()
    session_factory = init_db(create_db_engine(settings.database_url))
    registry = LinkRegistry(
        session_factory,
        key_length=settings.key_length,
        report_tz=settings.report_tz(),
    )
    return create_app(registry, ProStatus(session_factory), settings)
