"""Console entry points: ``echorelay-server`` and ``echorelay-client``.

Run the relay::

    echorelay-server --port 3000

Record and hear the echo (Enter toggles record/stop)::

    echorelay-client run --endpoint http://localhost:3000
"""

import argparse
import asyncio
import logging
import sys

import uvicorn

from echorelay.client.api_client import APIClient, APIError
from echorelay.client.audio import create_backend, create_playback
from echorelay.client.relay_client import RelayClient
from echorelay.core.config import get_settings
from echorelay.core.models import ClientStatus

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


def server_main() -> None:
    """Serve the relay with uvicorn."""
    settings = get_settings()
    parser = argparse.ArgumentParser(description="EchoRelay - audio echo relay server")
    parser.add_argument("--host", default=settings.app_host, help="Bind address")
    parser.add_argument(
        "-p", "--port",
        type=int,
        default=settings.app_port,
        help=f"Listen port (default: {settings.app_port})",
    )
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level")
    args = parser.parse_args()

    _configure_logging(args.log_level)
    logger.info("> Ready on http://%s:%s (relay at %s)", args.host, args.port, settings.relay_path)
    uvicorn.run(
        "echorelay.api.app:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
        ws_max_size=settings.max_unit_bytes,
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


def _render(status: ClientStatus) -> str:
    actions = [
        name
        for name, enabled in (
            ("connect", status.can_connect),
            ("record", status.can_start),
            ("stop", status.can_stop),
        )
        if enabled
    ]
    line = (
        f"[{status.connection_state}] [{status.recording_state}] "
        f"{status.endpoint} actions: {', '.join(actions) or 'none'}"
    )
    if status.last_error is not None:
        line += f"\n  error: {status.last_error.message}"
    return line


async def _interactive(endpoint: str, device_id: str | None) -> None:
    settings = get_settings()
    backend = create_backend(sample_rate=settings.sample_rate, channels=settings.channels)
    if not await backend.request_capture_permission():
        print("Please allow microphone access to continue")

    client = RelayClient(
        backend=backend,
        playback=create_playback(),
        settings=settings,
        endpoint=endpoint,
        on_change=lambda status: print(_render(status)),
        on_audio_response=lambda unit: print(f"  echo: {unit.size} bytes"),
    )
    if device_id:
        client.controller.device_id = device_id

    await client.connect()
    print("Enter: record/stop   c <endpoint>: reconnect   s: status   q: quit")
    try:
        while True:
            raw = await asyncio.to_thread(sys.stdin.readline)
            line = raw.strip()
            if not raw or line == "q":
                break
            if line.startswith("c"):
                await client.connect(line[1:].strip() or None)
            elif line == "s":
                print(_render(client.status()))
            elif client.controller.can_stop:
                await client.stop_recording()
            elif client.controller.can_start:
                await client.start_recording()
            else:
                print(_render(client.status()))
    finally:
        await client.close()


def client_main() -> None:
    """Console client for the relay."""
    settings = get_settings()
    parser = argparse.ArgumentParser(description="EchoRelay - record, relay, and play back")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("devices", help="List available input devices")

    check = sub.add_parser("check", help="Probe an input device")
    check.add_argument("device_id", help="Device id from `devices`")

    status = sub.add_parser("status", help="Show server health, sessions, and metrics")
    status.add_argument("--endpoint", default=settings.relay_endpoint)

    run = sub.add_parser("run", help="Interactive record / echo loop")
    run.add_argument("--endpoint", default=settings.relay_endpoint)
    run.add_argument("--device", default=settings.input_device or None, help="Input device id")

    args = parser.parse_args()
    _configure_logging(args.log_level)

    if args.command == "devices":
        backend = create_backend(sample_rate=settings.sample_rate, channels=settings.channels)
        print("Available input devices:")
        for device in backend.list_input_devices():
            print(f"  [{device.id}] {device.label}")
        return

    if args.command == "check":
        backend = create_backend(sample_rate=settings.sample_rate, channels=settings.channels)
        ok = asyncio.run(backend.check_device(args.device_id))
        print(f"Device {args.device_id}: {'available' if ok else 'not available'}")
        sys.exit(0 if ok else 1)

    if args.command == "status":
        api = APIClient(base_url=args.endpoint)
        try:
            health = api.health_check()
            print(f"Server {health['status']} (v{health['version']})")
            for session in api.list_sessions():
                print(f"  session {session['id']}: {session['units']} units, {session['bytes']} bytes")
            counters = api.get_metrics()["counters"]
            print("  " + ", ".join(f"{k}={v}" for k, v in counters.items()))
        except APIError as exc:
            print(exc.message)
            sys.exit(1)
        finally:
            api.close()
        return

    try:
        asyncio.run(_interactive(args.endpoint, args.device))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")


if __name__ == "__main__":
    client_main()
