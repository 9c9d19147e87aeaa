"""Stage 4: Lightmaps -- run the selected lightmap strategy."""
from __future__ import annotations

import logging
import os
import sys

logger = logging.getLogger("janus_export.s04")

_script_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _script_dir not in sys.path:
    sys.path.insert(0, _script_dir)

from export_session import ExportSession


def run(session: ExportSession) -> None:
    """Execute Stage 4."""
    strategy = session.strategy
    logger.info("Stage 4: lightmap mode %s", strategy.mode)
    strategy.process(session)
