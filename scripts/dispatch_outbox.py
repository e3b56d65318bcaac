"""Script de dispatch manuel de l'outbox.

Exécute un ou plusieurs cycles de dispatch hors Celery (maintenance, reprise
après incident) et affiche l'état de l'outbox. Sort avec un code non-zéro si
des événements restent en échec.
"""

from __future__ import annotations

import argparse
import sys

from hostlink.core.container import container


def main() -> int:
    """Dispatch the outbox and exit non-zero if failed events remain."""
    parser = argparse.ArgumentParser(description="Dispatch pending outbox events")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--cycles", type=int, default=1)
    parser.add_argument("--force-status-check", action="store_true")
    args = parser.parse_args()

    if args.force_status_check:
        result = container.gateway.check_status(force=True)
        print(f"status={result.status}")

    batch = args.batch_size or container.settings.DISPATCH_BATCH_SIZE
    sent = 0
    for _ in range(max(1, args.cycles)):
        n = container.dispatcher.dispatch_pending(batch)
        sent += n
        if n == 0:
            break
    counts = container.outbox.counts_by_status()
    print(
        f"sent={sent} pending={counts.get('pending', 0)} failed={counts.get('failed', 0)}"
    )
    return 1 if counts.get("failed", 0) else 0


if __name__ == "__main__":
    sys.exit(main())
