"""Console-script entry point for docstore."""

from __future__ import annotations

import sys
from typing import Optional, Sequence

from .. import logging_manager as log_mgr
from ..config_manager import build_settings
from ..context import DocstoreContext
from .args import build_cli_parser
from .commands import execute_command, settings_overrides


def main(argv: Optional[Sequence[str]] = None, *, context: Optional[DocstoreContext] = None) -> int:
    """Run the docstore CLI and return the process exit code."""

    args = build_cli_parser().parse_args(argv)
    log_mgr.configure_logging_level(debug_enabled=bool(getattr(args, "debug", False)))

    owned = context is None
    if context is None:
        context = DocstoreContext(
            build_settings(settings_overrides(args)),
            probe_durations=getattr(args, "probe_durations", True),
        )
    try:
        return execute_command(context, args)
    except KeyboardInterrupt:
        log_mgr.console_error("Interrupted", logger_obj=log_mgr.get_logger())
        return 130
    finally:
        if owned:
            context.close()


if __name__ == "__main__":  # pragma: no cover - manual execution
    sys.exit(main())
