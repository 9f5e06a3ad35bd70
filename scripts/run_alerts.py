"""Plan and schedule low-attendance alerts, or watch the live class tracker.

Standalone CLI script around AttendanceMonitor. Logs in through the portal
relay (credentials from .env or the stored session), runs one scheduling pass
and prints the resulting plan.

Run with: python scripts/run_alerts.py
JSON:     python scripts/run_alerts.py --json
Replay:   python scripts/run_alerts.py --now "2026-10-19 09:55"
Watch:    python scripts/run_alerts.py --watch
Target:   python scripts/run_alerts.py --set-target 1042 80

Exit codes:
  0 = success
  1 = error (message on stderr)
  2 = scheduling run aborted (previous alerts kept)
"""

import argparse
import asyncio
import json
import os
import sys
from datetime import datetime, timedelta

from dotenv import load_dotenv

load_dotenv()

# Add project root to path for src imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from src.attendance_alerts.config import get_config  # noqa: E402
from src.attendance_alerts.logging import setup_logging  # noqa: E402
from src.attendance_alerts.models import AlertClass, LiveState  # noqa: E402
from src.attendance_alerts.monitor import AttendanceMonitor  # noqa: E402
from src.attendance_alerts.normalizer import parse_instant  # noqa: E402
from src.attendance_alerts.scheduler import RunStatus, SchedulerRunResult  # noqa: E402
from src.attendance_alerts.tracker import describe_live_state  # noqa: E402


def _log(msg: str) -> None:
    """Write diagnostic messages to stderr so stdout stays clean for JSON."""
    print(msg, file=sys.stderr)


def _parse_args() -> argparse.Namespace:
    """Parse CLI arguments using argparse."""
    parser = argparse.ArgumentParser(
        description="Schedule low-attendance alerts or watch the live class tracker.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--now",
        type=str,
        default=None,
        help="Plan as if the local time were this (e.g. '2026-10-19 09:55').",
    )
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--json",
        action="store_true",
        help="Print the alert plan as JSON instead of a table.",
    )
    mode_group.add_argument(
        "--watch",
        action="store_true",
        help="Keep running and print the live class status every tick.",
    )
    mode_group.add_argument(
        "--set-target",
        nargs=2,
        type=int,
        metavar=("COURSE_ID", "PERCENT"),
        help="Store an attendance target for a course and exit.",
    )
    return parser.parse_args()


def _format_plan(result: SchedulerRunResult) -> str:
    """Format the run's alert plan as a human-readable table."""
    if result.plan is None or not result.plan.alerts:
        return "No at-risk classes in the current timetable window."

    lines = [f"{'When':<17} {'Class':<10} {'Title':<40} Body", "-" * 100]
    for alert in result.plan.alerts:
        marker = alert.alert_class.value
        if alert.alert_class is AlertClass.IMMEDIATE:
            when = "now"
        else:
            when = alert.fire_at.strftime("%Y-%m-%d %H:%M")
        lines.append(f"{when:<17} {marker:<10} {alert.title[:40]:<40} {alert.body}")
    lines.append("")
    lines.append(
        f"{result.armed} armed, {result.immediate} sent now, {result.dropped} skipped"
    )
    return "\n".join(lines)


def _print_state(state: LiveState) -> None:
    threshold = timedelta(minutes=get_config().countdown_threshold_minutes)
    label = ""
    if state.current is not None:
        label = f" {state.current.label} ({state.elapsed_fraction:.0%})"
    elif state.next is not None:
        label = f" next: {state.next.label}"
    text = describe_live_state(state, threshold)
    print(f"\r{state.status.value:<17}{label} - {text}   ", end="")


async def main(args: argparse.Namespace) -> int:
    config = get_config()
    setup_logging(json_output=config.log_json, log_level=config.log_level)

    now = None
    if args.now:
        parsed = parse_instant(args.now)
        if not parsed.ok:
            raise ValueError(f"Could not parse --now {args.now!r}: {parsed.error}")
        now = parsed.value

    monitor = AttendanceMonitor.from_config(
        config, listener=_print_state if args.watch else None
    )

    if args.set_target:
        course_id, percent = args.set_target
        monitor.targets.set_target(course_id, percent)
        _log(f"Target for course {course_id} set to {percent}%")
        return 0

    await monitor.session.ensure_logged_in(config.portal_user, config.portal_pass)

    try:
        result = await monitor.refresh(now)
        for line in monitor.scheduler.logs():
            _log(line)

        if args.watch:
            _log("Watching live status (Ctrl+C to stop)...")
            while True:
                await asyncio.sleep(3600)

        if args.json:
            print(json.dumps(result.model_dump(mode="json"), indent=2))
        else:
            print(_format_plan(result))
    finally:
        await monitor.close()

    return 2 if result.status is RunStatus.ABORTED else 0


if __name__ == "__main__":
    args = _parse_args()
    try:
        sys.exit(asyncio.run(main(args)))
    except KeyboardInterrupt:
        _log("\nStopped.")
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
