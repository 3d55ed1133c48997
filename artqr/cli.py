"""artqr CLI: manage short links, render artistic QR codes, run the server."""

import argparse
import sys
from pathlib import Path

from artqr.config import Settings
from artqr.errors import ArtQRError
from artqr.logging import audit, get_logger, setup_logging

log = get_logger("cli")


def _services(settings: Settings):
    from artqr.database import create_db_engine, init_db
    from artqr.gate import ProStatus
    from artqr.registry import LinkRegistry

    session_factory = init_db(create_db_engine(settings.database_url))
    registry = LinkRegistry(session_factory, key_length=settings.key_length, report_tz=settings.report_tz())
    return registry, ProStatus(session_factory)


def _short_url(settings: Settings, link_id: str) -> str:
    from artqr.shorturl import build_short_url
    return build_short_url(settings.base_url, link_id, settings.short_path)


def cmd_shorten(args, settings):
    """Create a short link."""
    registry, _ = _services(settings)
    link = registry.create_link(args.url)
    print(f"Short URL: {_short_url(settings, link.id)}")
    print(f"Key:       {link.id}")
    print(f"Target:    {link.target_url}")


def cmd_links(args, settings):
    """List links, newest first, through the freemium gate."""
    from artqr.gate import FreemiumGate

    registry, pro_status = _services(settings)
    listing = FreemiumGate(registry, pro_status, visible_limit=settings.free_link_limit).list_links()
    if not listing.links:
        print("No links yet.")
    for s in listing.links:
        print(f"  {s.link.id}  {s.scan_count:5d} scans  {s.link.created_at:%Y-%m-%d %H:%M}  {s.link.target_url}")
    if listing.hidden_count:
        print(f"  ... {listing.hidden_count} more hidden (run 'artqr unlock' after purchase)")


def cmd_detail(args, settings):
    """Show scans for one link."""
    registry, _ = _services(settings)
    detail = registry.get_detail(args.id)
    print(f"{detail.link.id} -> {detail.link.target_url} ({len(detail.scans)} scans)")
    print("Per day:")
    for bucket in detail.per_date_counts:
        print(f"  {bucket.date}  {bucket.count}")
    print("Recent scans:")
    for scan in detail.scans[: args.limit]:
        print(f"  #{scan.id}  {scan.scanned_at:%Y-%m-%d %H:%M:%S}  {scan.user_agent}")


def cmd_delete(args, settings):
    """Delete a link and its scans."""
    registry, _ = _services(settings)
    if not registry.delete_link(args.id):
        print(f"Link not found: {args.id}")
        sys.exit(1)
    print(f"Deleted {args.id}")


def cmd_render(args, settings):
    """Composite the QR for a link onto a (stylised) background image."""
    from artqr.compositor import compose_artistic_qr, load_background

    registry, _ = _services(settings)
    link = registry.get_link(args.id)
    payload = _short_url(settings, link.id)

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)

    image = compose_artistic_qr(load_background(args.image), payload, size=args.size or settings.output_size)
    image.save(output)
    print(f"Rendered: {output} ({image.size[0]}x{image.size[1]}) -> {payload}")

    if args.verify:
        _report_scan(image, payload)


def _report_scan(image, expected: str) -> None:
    from artqr.generator import get_module_matrix
    from artqr.verify import add_quiet_zone, verify

    module_count = len(get_module_matrix(expected))
    results = verify(add_quiet_zone(image, module_count), expected_data=expected)
    for r in results:
        status = "PASS" if r.success else "FAIL"
        print(f"  [{r.decoder:12s}] {status} | {r.decode_time_ms:6.1f}ms | {r.decoded_data or r.error}")
    if not any(r.success for r in results):
        sys.exit(1)


def cmd_verify(args, settings):
    """Decode a QR image."""
    from artqr.compositor import load_background
    from artqr.verify import add_quiet_zone, verify

    img = load_background(args.image)
    if args.modules:
        img = add_quiet_zone(img, args.modules)
    results = verify(img, expected_data=args.expected)
    for r in results:
        status = "PASS" if r.success else "FAIL"
        print(f"  [{r.decoder:12s}] {status} | {r.decode_time_ms:6.1f}ms | {r.decoded_data or r.error}")
    sys.exit(0 if any(r.success for r in results) else 1)


def cmd_unlock(args, settings):
    """Record a completed purchase for this instance."""
    _, pro_status = _services(settings)
    pro_status.unlock()
    print("Pro status: unlocked")


def cmd_serve(args, settings):
    """Start the HTTP server."""
    from artqr.server import build_app

    app = build_app(settings)
    host = args.host or settings.host
    port = args.port or settings.port
    print(f"Starting server on http://{host}:{port}")
    print(f"Short links: {_short_url(settings, '<id>')}")
    app.run(host=host, port=port, debug=args.debug)


def main(argv=None):
    parser = argparse.ArgumentParser(prog="artqr", description="Artistic QR codes with scan tracking")

    parser.add_argument("-V", "--verbose", action="store_true", help="Enable DEBUG-level logging")
    parser.add_argument("--log-file", default=None, help="Write JSON logs to file")
    parser.add_argument("--json-logs", action="store_true", help="JSON console logs")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    p_short = subparsers.add_parser("shorten", help="Create a short link")
    p_short.add_argument("url", help="Target URL")

    subparsers.add_parser("links", help="List links with scan counts")

    p_detail = subparsers.add_parser("detail", help="Show scans for a link")
    p_detail.add_argument("id", help="Short key")
    p_detail.add_argument("--limit", type=int, default=20, help="Recent scans to show")

    p_del = subparsers.add_parser("delete", help="Delete a link and its scans")
    p_del.add_argument("id", help="Short key")

    p_render = subparsers.add_parser("render", help="Render an artistic QR for a link")
    p_render.add_argument("id", help="Short key")
    p_render.add_argument("image", help="Background image (already stylised)")
    p_render.add_argument("-o", "--output", default="output/artqr.png", help="Output file path")
    p_render.add_argument("--size", type=int, default=None, help="Output size in pixels")
    p_render.add_argument("--verify", action="store_true", help="Decode the result after rendering")

    p_ver = subparsers.add_parser("verify", help="Decode a QR image")
    p_ver.add_argument("image", help="Path to QR image")
    p_ver.add_argument("--expected", default=None, help="Expected decoded data (fails if mismatch)")
    p_ver.add_argument("--modules", type=int, default=None,
                       help="Module count; adds a quiet zone for edge-to-edge renders")

    subparsers.add_parser("unlock", help="Mark this instance as pro")

    p_serve = subparsers.add_parser("serve", help="Start the HTTP server")
    p_serve.add_argument("--host", default=None, help="Bind address")
    p_serve.add_argument("--port", type=int, default=None, help="Port to listen on")
    p_serve.add_argument("--debug", action="store_true", help="Enable Flask debug mode")

    args = parser.parse_args(argv)
    settings = Settings()

    level = "DEBUG" if args.verbose else settings.log_level
    setup_logging(level=level, log_file=args.log_file or settings.log_file,
                  json_format=args.json_logs or settings.json_logs)

    if args.command is None:
        parser.print_help()
        sys.exit(1)
    audit("cli.start", logger=log, command=args.command)

    commands = {
        "shorten": cmd_shorten,
        "links": cmd_links,
        "detail": cmd_detail,
        "delete": cmd_delete,
        "render": cmd_render,
        "verify": cmd_verify,
        "unlock": cmd_unlock,
        "serve": cmd_serve,
    }
    try:
        commands[args.command](args, settings)
    except ArtQRError as exc:
        log.error("%s failed: %s", args.command, exc)
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)
    audit("cli.done", logger=log, command=args.command)


if __name__ == "__main__":
    main()
