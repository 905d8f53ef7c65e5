"""Root CLI group — entry point for all labdesk commands."""

from __future__ import annotations

from typing import Any

import click

from labdesk import __version__
from labdesk.core.exceptions import LabDeskError, NotFoundError, ValidationError
from labdesk.output.formatter import OutputFormatter


class LabDeskContext:
    """Shared context passed through Click commands."""

    def __init__(self, json_mode: bool = False, config: dict[str, Any] | None = None) -> None:
        from labdesk.services.progress_service import ProgressCache

        self.json_mode = json_mode
        self._config = config
        self.formatter = OutputFormatter(
            json_mode=json_mode,
            date_format=self.config["display"]["date_format"],
        )
        self.cache = ProgressCache()
        self._db = None

    @property
    def config(self) -> dict[str, Any]:
        if self._config is None:
            from labdesk.core.config import load_config

            self._config = load_config()
        return self._config

    @property
    def actor(self) -> str:
        from labdesk.core.config import get_actor

        return get_actor(self.config)

    @property
    def max_workers(self) -> int:
        return int(self.config["verification"]["max_workers"])

    def get_db(self):
        """Lazy-load and return the database connection, migrating on first use."""
        if self._db is None:
            from labdesk.core.config import get_data_dir
            from labdesk.core.database import DB_FILENAME, DatabaseConnection
            from labdesk.core.migrations import initialize_database

            self._db = DatabaseConnection(db_path=get_data_dir(self.config) / DB_FILENAME)
            self._db.connect()
            initialize_database(self._db)
        return self._db


pass_context = click.make_pass_decorator(LabDeskContext, ensure=True)

_EXIT_CODES = {ValidationError: 2, NotFoundError: 3}


class JsonGroup(click.Group):
    """Group that reports LabDeskError as a formatted error and a non-zero exit."""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except LabDeskError as e:
            code = next((c for t, c in _EXIT_CODES.items() if isinstance(e, t)), 1)
            obj = ctx.find_object(LabDeskContext)
            if obj is not None and obj.json_mode:
                obj.formatter.json_error(str(e), code=code)
            else:
                OutputFormatter().error(str(e))
            ctx.exit(code)


@click.group(cls=JsonGroup)
@click.option("--json", "json_mode", is_flag=True, help="Output JSON for agent consumption.")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level (defaults to [logging] level in the config file).",
)
@click.version_option(__version__, prog_name="labdesk")
@click.pass_context
def cli(ctx: click.Context, json_mode: bool, log_level: str | None) -> None:
    """labdesk — lab order tracking, result verification and KPIs."""
    from labdesk.core.log import configure_logging

    obj = LabDeskContext(json_mode=json_mode)
    ctx.obj = obj
    configure_logging(log_level or obj.config["logging"]["level"])


# ── Register subcommands ──────────────────────────────────────────

from labdesk.cli.orders import orders  # noqa: E402
cli.add_command(orders)

from labdesk.cli.panels import panels  # noqa: E402
cli.add_command(panels)

from labdesk.cli.results import results  # noqa: E402
cli.add_command(results)

from labdesk.cli.kpi import kpi  # noqa: E402
cli.add_command(kpi)

from labdesk.cli.seed import seed_cmd  # noqa: E402
cli.add_command(seed_cmd, "seed")

from labdesk.cli.config_cmd import config_cmd  # noqa: E402
cli.add_command(config_cmd)
