# ruff: noqa: E402
"""Run ``python -m queue_loadtest``."""

# Sockets, ssl and time must be cooperative before requests or
# websocket-client are imported, or each virtual user would block the rest.
from gevent import monkey

monkey.patch_all()

from queue_loadtest.cli import main

raise SystemExit(main())
