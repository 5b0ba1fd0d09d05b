"""CLI entry point for kubectl-execrec."""

from __future__ import annotations

import asyncio
import logging
import sys

import typer

from execrec import __version__
from execrec.config import ExecrecConfig
from execrec.supervisor import SessionSupervisor

logger = logging.getLogger(__name__)

HELP = """Wrapper around 'kubectl exec' that logs all session output to a file.

Every argument is forwarded to 'kubectl exec' untouched.

Examples:

  kubectl execrec -n namespace pod-name -it -- bash

  kubectl execrec -n default my-pod -- ls -la

  KUBECTL_EXECREC_S3_BUCKET=my-bucket kubectl execrec -n kube-system pod-name -it -- sh
"""

app = typer.Typer(
    name="kubectl-execrec",
    help=HELP,
    add_completion=False,
)


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    # The relayed screen shares stderr, so stay quiet unless asked.
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        filename=log_file,
    )


@app.command(
    context_settings={
        "allow_extra_args": True,
        "ignore_unknown_options": True,
        "help_option_names": [],
    },
)
def execrec(
    args: list[str] | None = typer.Argument(
        None, help="Arguments forwarded verbatim to 'kubectl exec'."
    ),
) -> None:
    """Run 'kubectl exec' with the whole session recorded."""
    config = ExecrecConfig.load()
    setup_logging(config.debug, config.diagnostics_file)
    logger.debug("kubectl-execrec %s args=%s", __version__, args)

    supervisor = SessionSupervisor(args=list(args or []), config=config)
    code = asyncio.run(supervisor.run())
    if code != 0:
        raise typer.Exit(code)


def main() -> None:
    # "--" stops click from interpreting -it, -n, --help etc.; everything
    # after it reaches the command as plain arguments.
    app(args=["--", *sys.argv[1:]], prog_name="kubectl-execrec")


if __name__ == "__main__":
    main()
