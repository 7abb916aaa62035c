"""kubepulse command-line interface.

Commands:
    kubepulse summary NS                       Incident summary of a namespace.
    kubepulse changes NS [--since 15]          Recent changes, newest first.
    kubepulse rollout NS DEPLOYMENT            Rollout timeline of a Deployment.
    kubepulse saturation NS                    Saturated workloads, worst first.
    kubepulse events NS [--since 30]           Namespace events, newest first.
    kubepulse watch NS | kubepulse pods        Start the live pod index / show its pods.
    kubepulse serve                            Run the REST server.
    kubepulse version                          Print version and exit.

All query commands call the REST API at http://localhost:8080 (configurable
via ``--api-url``).  Output is colourised for readability; ``--json`` prints
the raw response instead.
"""

from __future__ import annotations

import json

import click
import httpx

from kubepulse import __version__

_DEFAULT_API_URL = "http://localhost:8080"

# ---------------------------------------------------------------------------
# Colour helpers
# ---------------------------------------------------------------------------

_EVENT_TYPE_COLORS: dict[str, str] = {
    "normal": "green",
    "warning": "yellow",
}

_POD_STATUS_COLORS: dict[str, str] = {
    "running": "green",
    "succeeded": "green",
    "pending": "yellow",
    "terminating": "yellow",
    "failed": "red",
    "unknown": "red",
}


def _styled_event_type(event_type: str) -> str:
    color = _EVENT_TYPE_COLORS.get(event_type.lower(), "white")
    return click.style(event_type, fg=color)


def _styled_pod_status(status: str) -> str:
    color = _POD_STATUS_COLORS.get(status.lower(), "white")
    return click.style(status, fg=color)


def _severity_color(severity: int) -> str:
    if severity >= 20:
        return "red"
    if severity >= 5:
        return "yellow"
    return "white"


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def _request(method: str, api_url: str, path: str, params: dict[str, str] | None = None) -> dict[str, object]:
    """Perform a request and return the parsed JSON body.

    Raises click.ClickException on connection errors or non-2xx responses.
    """
    url = api_url.rstrip("/") + path
    try:
        with httpx.Client(timeout=60.0) as client:
            response = client.request(method, url, params=params or {})
        response.raise_for_status()
        return response.json()  # type: ignore[no-any-return]
    except httpx.ConnectError as err:
        raise click.ClickException(f"Cannot connect to kubepulse API at {api_url}. Is the server running?") from err
    except httpx.HTTPStatusError as exc:
        _handle_error_response(exc.response)
        raise  # unreachable: _handle_error_response always raises


def _get(api_url: str, path: str, params: dict[str, str] | None = None) -> dict[str, object]:
    return _request("GET", api_url, path, params)


def _post(api_url: str, path: str) -> dict[str, object]:
    return _request("POST", api_url, path)


def _handle_error_response(response: httpx.Response) -> None:
    """Parse an error response body and raise a friendly ClickException."""
    try:
        data: dict[str, object] = response.json()
        error_code = str(data.get("error", "ERROR"))
        detail = str(data.get("detail", "Unknown error"))
        msg = f"{error_code}: {detail}"
    except ValueError:
        msg = f"HTTP {response.status_code}: {response.text[:200]}"
    raise click.ClickException(msg)


def _echo_json(data: dict[str, object]) -> None:
    click.echo(json.dumps(data, indent=2))


json_option = click.option(
    "--json",
    "output_json",
    is_flag=True,
    default=False,
    help="Print raw JSON response.",
)

# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--api-url",
    default=_DEFAULT_API_URL,
    envvar="KUBEPULSE_API_URL",
    show_default=True,
    help="kubepulse REST API base URL.",
)
@click.pass_context
def cli(ctx: click.Context, api_url: str) -> None:
    """kubepulse: incident correlation views for Kubernetes namespaces."""
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url


@cli.command("version")
def cmd_version() -> None:
    """Print the kubepulse version and exit."""
    click.echo(f"kubepulse {__version__}")


@cli.command("serve")
def cmd_serve() -> None:
    """Run the REST server (configured from KUBEPULSE_* environment variables)."""
    import asyncio

    from kubepulse.app import main

    asyncio.run(main())


# ---------------------------------------------------------------------------
# kubepulse summary
# ---------------------------------------------------------------------------


@cli.command("summary")
@click.argument("namespace")
@json_option
@click.pass_context
def cmd_summary(ctx: click.Context, namespace: str, output_json: bool) -> None:
    """Show the incident summary of NAMESPACE."""
    data = _get(ctx.obj["api_url"], f"/api/v1/namespaces/{namespace}/incident-summary")
    if output_json:
        _echo_json(data)
        return
    _print_summary(data)


def _print_summary(data: dict[str, object]) -> None:
    click.echo(click.style(f"Incident Summary: {data.get('namespace', '?')}", bold=True, underline=True))
    click.echo("")

    unhealthy: list[dict[str, object]] = data.get("unhealthy_workloads", [])  # type: ignore[assignment]
    if unhealthy:
        click.echo(click.style(f"Unhealthy Workloads ({len(unhealthy)}):", bold=True, fg="red"))
        for w in unhealthy:
            severity = int(w.get("severity", 0))  # type: ignore[call-overload]
            click.echo(
                f"  {click.style(str(w.get('name', '?')), fg=_severity_color(severity), bold=True)} "
                f"({w.get('kind', '?')})  ready={w.get('ready', '?')}  restarts={w.get('restart_count', 0)}"
            )
            for err in w.get("pod_errors", []):  # type: ignore[attr-defined]
                click.echo(f"    {click.style(str(err), fg='red')}")
    else:
        click.echo(click.style("All workloads healthy.", fg="green"))
    click.echo("")

    changes: list[dict[str, object]] = data.get("recent_changes", [])  # type: ignore[assignment]
    if changes:
        click.echo(click.style(f"Recent Changes ({len(changes)}):", bold=True))
        _print_change_rows(changes)
        click.echo("")

    events: list[dict[str, object]] = data.get("error_events", [])  # type: ignore[assignment]
    if events:
        click.echo(click.style(f"Warning Events (showing up to 10 of {len(events)}):", bold=True, fg="yellow"))
        _print_event_rows(events[:10])
        click.echo("")

    saturation: list[dict[str, object]] = data.get("saturation", [])  # type: ignore[assignment]
    if saturation:
        click.echo(click.style(f"Saturation ({len(saturation)}):", bold=True))
        _print_saturation_rows(saturation)
        click.echo("")

    routes: list[dict[str, object]] = data.get("affected_routes", [])  # type: ignore[assignment]
    if routes:
        click.echo(click.style(f"Affected Routes ({len(routes)}):", bold=True, fg="red"))
        for r in routes:
            hosts = ",".join(str(h) for h in r.get("hosts", []))  # type: ignore[attr-defined]
            paths = ",".join(str(p) for p in r.get("paths", []))  # type: ignore[attr-defined]
            click.echo(f"  {r.get('route_type', '?')}/{r.get('route_name', '?')}  {hosts}{paths} -> {r.get('backend_service', '?')}")


def _print_change_rows(changes: list[dict[str, object]]) -> None:
    for c in changes:
        ts = c.get("timestamp") or "-"
        click.echo(
            f"  {ts}  {click.style(str(c.get('change_type', '?')), fg='cyan')}  "
            f"{c.get('resource_kind', '?')}/{c.get('resource_name', '?')}: {c.get('description', '')}"
        )


def _print_event_rows(events: list[dict[str, object]]) -> None:
    for e in events:
        click.echo(
            f"  [{_styled_event_type(str(e.get('event_type', 'Normal')))}] {e.get('age', '?')}  "
            f"{e.get('involved_kind', '?')}/{e.get('involved_name', '?')}: "
            f"{e.get('reason', '')} {str(e.get('message', ''))[:80]}"
        )


def _print_saturation_rows(workloads: list[dict[str, object]]) -> None:
    for s in workloads:
        desired = s.get("desired_replicas")
        ready = s.get("ready_replicas")
        ratio = f"{ready}/{desired}" if desired is not None and ready is not None else "?"
        click.echo(
            f"  {s.get('workload_kind', '?')}/{s.get('workload_name', '?')}  ready={ratio}  "
            f"restarts={s.get('total_restarts', 0)}  score={s.get('score', 0)}"
        )


# ---------------------------------------------------------------------------
# kubepulse changes / rollout / saturation / events
# ---------------------------------------------------------------------------


@cli.command("changes")
@click.argument("namespace")
@click.option("--since", "since_minutes", default=15, show_default=True, type=click.IntRange(1, 1440),
              help="Look-back window in minutes.")
@json_option
@click.pass_context
def cmd_changes(ctx: click.Context, namespace: str, since_minutes: int, output_json: bool) -> None:
    """Show what changed in NAMESPACE recently."""
    data = _get(
        ctx.obj["api_url"],
        f"/api/v1/namespaces/{namespace}/changes",
        params={"since_minutes": str(since_minutes)},
    )
    if output_json:
        _echo_json(data)
        return
    changes: list[dict[str, object]] = data.get("changes", [])  # type: ignore[assignment]
    if not changes:
        click.echo(click.style(f"No changes in the last {since_minutes} minutes.", fg="green"))
        return
    click.echo(click.style(f"Changes in the last {since_minutes} minutes ({len(changes)}):", bold=True))
    _print_change_rows(changes)


@cli.command("rollout")
@click.argument("namespace")
@click.argument("deployment")
@json_option
@click.pass_context
def cmd_rollout(ctx: click.Context, namespace: str, deployment: str, output_json: bool) -> None:
    """Show the rollout timeline of DEPLOYMENT in NAMESPACE."""
    data = _get(ctx.obj["api_url"], f"/api/v1/namespaces/{namespace}/rollouts/{deployment}")
    if output_json:
        _echo_json(data)
        return

    steps: list[dict[str, object]] = data.get("steps", [])  # type: ignore[assignment]
    click.echo(click.style(f"Rollout timeline: {deployment}", bold=True, underline=True))
    if not steps:
        click.echo("  No ReplicaSets or events found.")
        return
    for step in steps:
        ts = step.get("timestamp") or "-"
        click.echo(f"  {ts}  {click.style(str(step.get('step_type', '?')), fg='cyan')}  {step.get('description', '')}")
        new_rs: dict[str, object] | None = step.get("new_rs")  # type: ignore[assignment]
        if new_rs:
            click.echo(f"      replicas={new_rs.get('replicas', 0)} ready={new_rs.get('ready', 0)}")


@cli.command("saturation")
@click.argument("namespace")
@json_option
@click.pass_context
def cmd_saturation(ctx: click.Context, namespace: str, output_json: bool) -> None:
    """Show saturated workloads in NAMESPACE, worst first."""
    data = _get(ctx.obj["api_url"], f"/api/v1/namespaces/{namespace}/saturation")
    if output_json:
        _echo_json(data)
        return
    workloads: list[dict[str, object]] = data.get("workloads", [])  # type: ignore[assignment]
    if not workloads:
        click.echo(click.style("No saturated workloads.", fg="green"))
        return
    click.echo(click.style(f"Saturated workloads ({len(workloads)}):", bold=True))
    _print_saturation_rows(workloads)


@cli.command("events")
@click.argument("namespace")
@click.option("--since", "since_minutes", default=None, type=click.IntRange(1, 1440),
              help="Only events from the last N minutes.")
@json_option
@click.pass_context
def cmd_events(ctx: click.Context, namespace: str, since_minutes: int | None, output_json: bool) -> None:
    """Show events in NAMESPACE, newest first."""
    params = {"since_minutes": str(since_minutes)} if since_minutes is not None else None
    data = _get(ctx.obj["api_url"], f"/api/v1/namespaces/{namespace}/events", params=params)
    if output_json:
        _echo_json(data)
        return
    events: list[dict[str, object]] = data.get("events", [])  # type: ignore[assignment]
    if not events:
        click.echo("No events.")
        return
    _print_event_rows(events)


# ---------------------------------------------------------------------------
# kubepulse watch / pods
# ---------------------------------------------------------------------------


@cli.command("watch")
@click.argument("namespace")
@click.pass_context
def cmd_watch(ctx: click.Context, namespace: str) -> None:
    """Point the server's live pod index at NAMESPACE."""
    data = _post(ctx.obj["api_url"], f"/api/v1/namespaces/{namespace}/pod-watch")
    click.echo(f"Watching pods in {data.get('namespace', namespace)} (state: {data.get('state', '?')})")


@cli.command("pods")
@json_option
@click.pass_context
def cmd_pods(ctx: click.Context, output_json: bool) -> None:
    """Show the latest pod list of the live pod index."""
    data = _get(ctx.obj["api_url"], "/api/v1/pods")
    if output_json:
        _echo_json(data)
        return
    if data.get("namespace") is None:
        click.echo("No pod watch active.  Start one with: kubepulse watch NAMESPACE")
        return
    pods: list[dict[str, object]] = data.get("pods", [])  # type: ignore[assignment]
    click.echo(click.style(f"Pods in {data['namespace']} ({len(pods)}):", bold=True) + f"  state: {data.get('state')}")
    for p in pods:
        workload = f"{p.get('workload_kind')}/{p.get('workload_name')}" if p.get("workload_name") else "-"
        click.echo(
            f"  {str(p.get('name', '?')):<48} {_styled_pod_status(str(p.get('status', '?')))}  "
            f"ready={p.get('ready', '?')}  restarts={p.get('restarts', 0)}  age={p.get('age', '?')}  {workload}"
        )


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
