"""
Command-line interface for bufkit-data.

Provides a CLI using Click for adding files to an archive, retrieving
them and checking the archive.
"""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path
from typing import NoReturn

import click

from bufkit_data import __version__
from bufkit_data.core.exceptions import BufkitDataError


@click.group()
@click.version_option(version=__version__, prog_name="bufkit-data")
@click.option(
    "--config", "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--root", "-r",
    type=click.Path(file_okay=False, path_type=Path),
    help="Archive root directory (overrides configuration)",
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.pass_context
def cli(ctx: click.Context, config: Path | None, root: Path | None, verbose: bool) -> None:
    """bufkit-data: archive of bufkit sounding files

    Stores one compressed file per site, model and run, indexed for
    lookup by site id, station number and time.
    """
    from bufkit_data.core.config import load_settings
    from bufkit_data.utils.logging import setup_logging

    ctx.ensure_object(dict)
    try:
        settings = load_settings(config)
    except BufkitDataError as e:
        _fail(e)

    if root is not None:
        settings.archive.root = root.expanduser()

    setup_logging(settings.logging, verbose=verbose)

    ctx.obj["settings"] = settings
    ctx.obj["verbose"] = verbose


@cli.command()
@click.pass_context
def create(ctx: click.Context) -> None:
    """Create an empty archive (or upgrade an existing one)."""
    from bufkit_data.archive.archive import Archive

    root = ctx.obj["settings"].archive.root
    click.echo(f"Creating archive at {root}")
    try:
        with Archive.create(root, ctx.obj["settings"].archive.compression_level):
            pass
    except BufkitDataError as e:
        _fail(e)
    click.echo("Archive ready")


@cli.command()
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--model", "-m",
    type=str,
    required=True,
    callback=lambda ctx, param, value: _parse_model(value),
    help="Model that produced the files (gfs, nam, nam4km)",
)
@click.option(
    "--site-id", "-s",
    type=str,
    help="Site id, for files that do not carry one",
)
@click.pass_context
def add(ctx: click.Context, files: tuple[Path, ...], model, site_id: str | None) -> None:
    """Add sounding files to the archive.

    Gzip-compressed input is accepted.

    Examples:

        bufkit-data add -m gfs downloads/gfs3_kmso.buf

        bufkit-data add -m nam downloads/*.buf.gz
    """
    from bufkit_data.utils.compression import decompress_bytes, is_gzip

    failed = 0
    with _open_archive(ctx) as archive:
        for path in files:
            raw = path.read_bytes()
            try:
                if is_gzip(raw):
                    raw = decompress_bytes(raw)
                record = archive.add(raw, model=model, site_id=site_id)
            except (BufkitDataError, OSError, EOFError) as e:
                click.echo(f"Failed {path}: {e}", err=True)
                failed += 1
                continue
            click.echo(f"Added {path.name} as {record.file_name}")

    click.echo(f"\nAdded {len(files) - failed}/{len(files)} files")
    if failed:
        sys.exit(1)


@cli.command()
@click.argument("site")
@click.argument("model", callback=lambda ctx, param, value: _parse_model(value))
@click.argument("when", callback=lambda ctx, param, value: _parse_when(value))
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write to file instead of stdout",
)
@click.pass_context
def retrieve(ctx: click.Context, site: str, model, when: datetime, output: Path | None) -> None:
    """Print the run of MODEL for SITE at WHEN.

    SITE is a site id or a station number. WHEN is a UTC time such as
    2017-04-01T18 or 2017040118Z; a run whose forecast covers WHEN is used
    if none starts exactly then.
    """
    with _open_archive(ctx, read_only=True) as archive:
        try:
            station_num = _station_num(archive, site)
            raw = archive.retrieve(model, station_num, when)
        except BufkitDataError as e:
            _fail(e)
    _write_output(raw, output)


@cli.command()
@click.argument("site")
@click.argument("model", callback=lambda ctx, param, value: _parse_model(value))
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write to file instead of stdout",
)
@click.pass_context
def latest(ctx: click.Context, site: str, model, output: Path | None) -> None:
    """Print the most recent run of MODEL for SITE."""
    with _open_archive(ctx, read_only=True) as archive:
        try:
            raw = archive.retrieve_most_recent(site, model)
        except BufkitDataError as e:
            _fail(e)
    _write_output(raw, output)


@cli.command()
@click.option(
    "--format", "-f",
    type=click.Choice(["table", "csv", "json"]),
    default="table",
    help="Output format",
)
@click.pass_context
def sites(ctx: click.Context, format: str) -> None:
    """List the sites in the archive."""
    with _open_archive(ctx, read_only=True) as archive:
        site_list = archive.queries.sites()
        aliases = archive.queries.aliases()

    if format == "table":
        click.echo(f"{'Station':>8} {'Ids':<12} {'Name':<20} {'State':<5} {'Lat':>8} {'Lon':>9} {'Auto':<4}")
        click.echo("-" * 72)
        for s in site_list:
            ids = ",".join(aliases.get(s.station_num, []))
            lat = f"{s.mean_lat:.3f}" if s.mean_lat is not None else "N/A"
            lon = f"{s.mean_lon:.3f}" if s.mean_lon is not None else "N/A"
            auto = "Yes" if s.auto_download else "No"
            click.echo(f"{s.station_num:>8} {ids[:12]:<12} {(s.name or '')[:20]:<20} {(s.state or ''):<5} {lat:>8} {lon:>9} {auto:<4}")

    elif format == "csv":
        click.echo("station_num,ids,name,state,mean_lat,mean_lon,auto_download")
        for s in site_list:
            ids = " ".join(aliases.get(s.station_num, []))
            click.echo(f"{s.station_num},{ids},{s.name or ''},{s.state or ''},{'' if s.mean_lat is None else s.mean_lat},{'' if s.mean_lon is None else s.mean_lon},{s.auto_download}")

    elif format == "json":
        import json
        data = [dict(s.to_dict(), ids=aliases.get(s.station_num, [])) for s in site_list]
        click.echo(json.dumps(data, indent=2))

    click.echo(f"\nTotal: {len(site_list)} sites")


@cli.command()
@click.option("--lat", type=float, help="Sort by distance from this latitude")
@click.option("--lon", type=float, help="Sort by distance from this longitude")
@click.option("--max-distance", type=float, help="Only stations within this many km")
@click.pass_context
def summary(
    ctx: click.Context,
    lat: float | None,
    lon: float | None,
    max_distance: float | None,
) -> None:
    """Summarize each station: ids, models, coordinates and file count."""
    if (lat is None) != (lon is None):
        raise click.BadParameter("--lat and --lon must be given together")

    with _open_archive(ctx, read_only=True) as archive:
        if lat is not None:
            results = archive.queries.station_summaries_near(lat, lon, max_distance)
        else:
            results = [(s, None) for s in archive.queries.station_summaries()]

    for station, dist in results:
        click.echo(str(station))
        if dist is not None:
            click.echo(f"   Distance: {dist:.1f} km")
        click.echo("")
    click.echo(f"Total: {len(results)} stations")


@cli.command()
@click.argument("model", callback=lambda ctx, param, value: _parse_model(value))
@click.option(
    "--site", "-s",
    type=str,
    help="Show first/last run and gaps for one site",
)
@click.pass_context
def inventory(ctx: click.Context, model, site: str | None) -> None:
    """List the sites with runs of MODEL, or one site's run inventory."""
    with _open_archive(ctx, read_only=True) as archive:
        try:
            if site is not None:
                inv = archive.queries.run_inventory(_station_num(archive, site), model)
            else:
                rows = archive.queries.inventory(model)
        except BufkitDataError as e:
            _fail(e)

    if site is not None:
        click.echo(f"Site: {site.upper()}  Model: {model}")
        click.echo(f"  First: {inv.first:%Y-%m-%d %HZ}")
        click.echo(f"  Last:  {inv.last:%Y-%m-%d %HZ}")
        click.echo(f"  Missing runs: {len(inv.missing)}")
        click.echo(f"  Auto download: {'Yes' if inv.auto_download else 'No'}")
        return

    click.echo(f"{'Station':>8} {'Id':<8} {'Name':<20}")
    click.echo("-" * 38)
    for s, site_id in rows:
        click.echo(f"{s.station_num:>8} {(site_id or ''):<8} {(s.name or '')[:20]:<20}")
    click.echo(f"\nTotal: {len(rows)} sites")


@cli.command()
@click.argument("site")
@click.argument("model", callback=lambda ctx, param, value: _parse_model(value))
@click.option("--start", "-s", callback=lambda ctx, param, value: _parse_when(value), help="Start of range (UTC)")
@click.option("--end", "-e", callback=lambda ctx, param, value: _parse_when(value), help="End of range (UTC)")
@click.pass_context
def missing(
    ctx: click.Context,
    site: str,
    model,
    start: datetime | None,
    end: datetime | None,
) -> None:
    """List the scheduled runs of MODEL missing for SITE."""
    if (start is None) != (end is None):
        raise click.BadParameter("--start and --end must be given together")

    with _open_archive(ctx, read_only=True) as archive:
        try:
            station_num = _station_num(archive, site)
            runs = archive.queries.missing_runs(
                station_num, model, (start, end) if start is not None else None
            )
        except BufkitDataError as e:
            _fail(e)

    for run in runs:
        click.echo(f"{run:%Y-%m-%d %HZ}")
    click.echo(f"\nTotal: {len(runs)} missing runs")


@cli.command()
@click.argument("file_names", nargs=-1, required=True)
@click.pass_context
def remove(ctx: click.Context, file_names: tuple[str, ...]) -> None:
    """Remove files from the archive by file name."""
    failed = 0
    with _open_archive(ctx) as archive:
        for name in file_names:
            try:
                archive.remove(name)
            except BufkitDataError as e:
                click.echo(f"Failed {name}: {e}", err=True)
                failed += 1
                continue
            click.echo(f"Removed {name}")

    if failed:
        sys.exit(1)


@cli.command()
@click.option("--compact", is_flag=True, help="Checkpoint the index before checking")
@click.option("--details", "-d", is_flag=True, help="List the offending files")
@click.pass_context
def verify(ctx: click.Context, compact: bool, details: bool) -> None:
    """Check that every index row has a blob and every blob a row."""
    with _open_archive(ctx) as archive:
        try:
            report = archive.compact_or_verify(compact=compact)
        except BufkitDataError as e:
            _fail(e)

    click.echo(str(report))
    if details:
        for label, names in (
            ("Orphan blob", report.orphan_blobs),
            ("Missing blob", report.missing_blobs),
            ("Leaked blob", report.leaked_blobs),
            ("Temp file", [p.name for p in report.temp_files]),
            ("Site without id", [str(n) for n in report.sites_without_aliases]),
        ):
            for name in names:
                click.echo(f"  {label}: {name}")

    if not report.is_consistent:
        sys.exit(1)


def _open_archive(ctx: click.Context, read_only: bool = False):
    """Open the configured archive or exit with an error."""
    from bufkit_data.archive.archive import Archive

    cfg = ctx.obj["settings"].archive
    try:
        return Archive.connect(
            cfg.root,
            compression_level=cfg.compression_level,
            read_only=read_only or cfg.read_only,
        )
    except BufkitDataError as e:
        _fail(e)


def _station_num(archive, site: str) -> int:
    """Resolve a site id or station number given on the command line."""
    from bufkit_data.core.exceptions import ArchiveNotFoundError

    if site.isdigit():
        return int(site)
    station_num = archive.queries.station_num_for_alias(site)
    if station_num is None:
        raise ArchiveNotFoundError("lookup", f"Unknown site id {site.upper()}")
    return station_num


def _parse_model(value: str | None):
    from bufkit_data.database.models import Model

    if value is None:
        return None
    try:
        return Model.from_str(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def _parse_when(value: str | None) -> datetime | None:
    from bufkit_data.utils.dates import parse_datetime

    if value is None:
        return None
    try:
        return parse_datetime(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def _write_output(raw: bytes, output: Path | None) -> None:
    if output is not None:
        output.write_bytes(raw)
        click.echo(f"Wrote {output}")
    else:
        click.echo(raw.decode("ascii", errors="replace"), nl=False)


def _fail(err: Exception) -> NoReturn:
    click.echo(f"Error: {err}", err=True)
    sys.exit(1)


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
