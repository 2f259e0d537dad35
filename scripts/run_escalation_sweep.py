#!/usr/bin/env python3
"""
Run the workflow escalation sweep.

Escalates every active workflow instance whose current step has waited
longer than its configuration's ``auto_escalate_after`` hours, or whose
total age exceeds ``max_processing_time`` hours.  Each instance is escalated
in its own transaction.

Uses PROCURE_DATABASE_URL if set, otherwise the configured database_url.

Usage:
    python3 scripts/run_escalation_sweep.py --once
    python3 scripts/run_escalation_sweep.py --once --as-of 2026-03-01T12:00:00+00:00
    python3 scripts/run_escalation_sweep.py            # loop every sweep_interval_minutes
"""

import argparse
import signal
import sys
import threading
from datetime import datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Escalate overdue workflow instances")
    p.add_argument("--config-set", default="default", help="Configuration set name (default: 'default')")
    p.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    p.add_argument(
        "--as-of",
        type=datetime.fromisoformat,
        default=None,
        help="Evaluate deadlines at this ISO timestamp instead of now (implies --once)",
    )
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    from procure_config import get_active_config
    from procure_kernel.db.engine import get_session_factory, init_engine_from_url
    from procure_kernel.logging_config import configure_logging
    from procure_services.escalation_sweep import EscalationSweep

    settings = get_active_config(args.config_set)
    configure_logging(level=settings.logging.level)
    init_engine_from_url(settings.database_url)

    sweep = EscalationSweep(
        get_session_factory(),
        escalation_targets=settings.escalation.targets,
        interval_seconds=settings.escalation.sweep_interval_minutes * 60,
    )

    if args.once or args.as_of is not None:
        result = sweep.run(args.as_of)
        print(
            f"examined={result.examined} escalated={len(result.escalated)} "
            f"skipped={len(result.skipped)} failed={len(result.failed)}"
        )
        return 1 if result.failed else 0

    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    sweep.start()
    stop.wait()
    sweep.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
