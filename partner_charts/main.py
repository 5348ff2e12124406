"""Command line entry point for the partner charts reconciler."""

import logging

import typer

from .config import ENV_PACKAGE, get_env_var, setup_logging
from .exceptions import PartnerChartsException, ValidationError
from .git_repo import clean_worktree
from .integrator import FeaturedPlacement
from .package import list_package_wrappers
from .paths import Paths
from .reconciler import FEATURED_MAX, Reconciler
from .validate import run_validations

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="partner-charts",
    help="Keep a Helm chart repository in sync with its partners' upstream charts.",
    no_args_is_help=True,
)
feature_app = typer.Typer(help="Manage the featured annotation", no_args_is_help=True)
app.add_typer(feature_app, name="feature")

PlacementOption = typer.Option(
    FeaturedPlacement.LAST_NEW.value,
    "--featured-placement",
    help="Which new chart receives an existing featured annotation: last-new or highest-version",
)


@app.callback()
def setup(
    log_level: str = typer.Option("", "--log-level", help="Log level; defaults to LOG_LEVEL or INFO"),
) -> None:
    setup_logging(log_level or None)


def _reconciler(placement: str = FeaturedPlacement.LAST_NEW.value) -> Reconciler:
    try:
        featured_placement = FeaturedPlacement(placement)
    except ValueError as e:
        raise typer.BadParameter(f"unknown featured placement {placement!r}") from e
    return Reconciler(Paths.from_cwd(), placement=featured_placement)


def _fail(e: Exception) -> typer.Exit:
    logger.error(str(e))
    return typer.Exit(code=1)


@app.command("list")
def list_packages() -> None:
    """Print every package as <vendor>/<name>."""
    try:
        packages = list_package_wrappers(Paths.from_cwd(), get_env_var(ENV_PACKAGE, ""))
    except PartnerChartsException as e:
        raise _fail(e) from e
    for package in packages:
        typer.echo(package.full_name)


def _generate_changes(auto: bool, placement: str) -> None:
    try:
        _reconciler(placement).generate_changes(auto=auto, current_package=get_env_var(ENV_PACKAGE, ""))
    except PartnerChartsException as e:
        raise _fail(e) from e


@app.command()
def stage(placement: str = PlacementOption) -> None:
    """Fetch new upstream versions into the working tree without committing."""
    _generate_changes(False, placement)


@app.command()
def auto(placement: str = PlacementOption) -> None:
    """Fetch new upstream versions and commit them."""
    _generate_changes(True, placement)


@app.command()
def unstage() -> None:
    """Discard every uncommitted change in the repository."""
    try:
        clean_worktree(Paths.from_cwd().repo_root)
    except PartnerChartsException as e:
        raise _fail(e) from e


@app.command()
def hide(packages: list[str] = typer.Argument(..., help="Packages as <vendor>/<name>")) -> None:
    """Hide every stored version of the given packages in the Rancher UI."""
    try:
        reconciler = _reconciler()
        for package in packages:
            reconciler.hide(package)
    except PartnerChartsException as e:
        raise _fail(e) from e


@feature_app.command("list")
def feature_list() -> None:
    """Print the featured charts by slot."""
    try:
        featured = _reconciler().list_featured()
    except PartnerChartsException as e:
        raise _fail(e) from e
    for slot in sorted(featured):
        typer.echo(f"{slot}: {', '.join(featured[slot])}")


@feature_app.command("add")
def feature_add(
    package: str = typer.Argument(..., help="Package as <vendor>/<name>"),
    slot: int = typer.Argument(..., help=f"Featured slot, 1 to {FEATURED_MAX}"),
) -> None:
    """Feature the newest version of a package."""
    try:
        _reconciler().add_featured(package, slot)
    except PartnerChartsException as e:
        raise _fail(e) from e


@feature_app.command("remove")
def feature_remove(package: str = typer.Argument(..., help="Package as <vendor>/<name>")) -> None:
    """Stop featuring a package."""
    try:
        _reconciler().remove_featured(package)
    except PartnerChartsException as e:
        raise _fail(e) from e


@app.command()
def validate() -> None:
    """Check the repository against the released branch and its own rules."""
    try:
        errors = run_validations(Paths.from_cwd())
        if errors:
            raise ValidationError(errors)
    except PartnerChartsException as e:
        raise _fail(e) from e
    logger.info("Successfully validated")


@app.command()
def cull(
    chart: str = typer.Argument(..., help="Chart name"),
    days: int = typer.Argument(..., min=0, help="Remove versions created more than this many days ago"),
) -> None:
    """Remove old versions of a chart."""
    try:
        removed = _reconciler().cull_charts(chart, days)
    except PartnerChartsException as e:
        raise _fail(e) from e
    logger.info(f"Removed {len(removed)} version(s) of {chart}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
