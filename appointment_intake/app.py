"""
Command line entry point for appointment intake.
Parses a text request or an image note, lists stored appointments, saves the default
timezone, or serves the HTTP API.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Optional, Sequence

from appointment_intake.intake_controller import IntakeController
from appointment_intake.logging_helper import Log
from appointment_intake.ocr_client import ImageTextExtractionError
from appointment_intake import settings_manager


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="appointment-intake",
        description="Turn appointment requests into structured appointments",
    )
    parser.add_argument("--timezone", help="IANA timezone for date/time phrases (default: configured timezone)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    text_parser = subparsers.add_parser("text", help="Parse a free text request")
    text_parser.add_argument("text", help="Request text, e.g. 'dentist tomorrow at 3pm'")

    image_parser = subparsers.add_parser("image", help="Parse a photo of an appointment note")
    image_parser.add_argument("path", type=Path, help="Path to a PNG or JPEG image")

    subparsers.add_parser("list", help="List appointments stored in this process")

    timezone_parser = subparsers.add_parser("set-timezone", help="Save the default timezone to the settings file")
    timezone_parser.add_argument("zone", help="IANA timezone, e.g. Europe/Berlin")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=5000)
    return parser


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _serve(controller: IntakeController, host: str, port: int) -> int:
    import uvicorn

    from appointment_intake.api import create_app

    Log.info(f"Serving appointment intake API on http://{host}:{port}")
    uvicorn.run(create_app(controller), host=host, port=port)
    return 0


def main(argv: Optional[Sequence[str]] = None, controller: Optional[IntakeController] = None) -> int:
    """Main entry point for the CLI."""
    args = _build_parser().parse_args(argv)

    Log.section("Appointment Intake")
    log_path = Log.get_log_path()
    if log_path:
        Log.info(f"Log file: {log_path}")

    try:
        if args.command == "set-timezone":
            settings_manager.set_default_timezone(args.zone)
            return 0

        controller = controller or IntakeController(timezone=args.timezone)

        if args.command == "text":
            _print_json(controller.process_text(args.text))
        elif args.command == "image":
            image_bytes = args.path.read_bytes()
            _print_json(controller.process_image(image_bytes, image_name=args.path.name))
        elif args.command == "list":
            _print_json(controller.list_appointments())
        elif args.command == "serve":
            return _serve(controller, args.host, args.port)
    except (ImageTextExtractionError, OSError, ValueError) as exc:
        Log.error(str(exc))
        print(f"error: {exc}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
