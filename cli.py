from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict

from finks import __version__
from finks.context import Context, build_context
from finks.docker_ops import parse_port_spec
from finks.errors import FinksError, ValidationFailure
from finks.models import AppRecord, AppStatus, TLSMode
from finks.networks import NetworkProvisioner
from finks.proxy import ProxyInstaller
from finks.reconciler import Reconciler


STATUS_MARKS = {
    AppStatus.RUNNING: "[up]",
    AppStatus.STOPPED: "[down]",
    AppStatus.FAILED: "[failed]",
    AppStatus.UNKNOWN: "[?]",
}


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _parse_env(pairs: list[str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValidationFailure(f"Invalid environment variable {pair!r} (expected KEY=VALUE)")
        env[key] = value
    return env


def _host_port(spec: str | None) -> int | None:
    for host in parse_port_spec(spec).values():
        if isinstance(host, tuple):
            host = host[1]
        if host:
            return host
    return None


def _print_apps(apps: list[AppRecord]) -> None:
    if not apps:
        print("No applications deployed.")
        return
    print(f"{'NAME':<15} {'IMAGE':<25} {'STATUS':<16} {'PORT':<15} {'DOMAIN':<25} CREATED")
    print("-" * 110)
    for app in apps:
        status = f"{STATUS_MARKS.get(app.status, '[?]')} {app.status.value}"
        print(
            f"{app.name:<15} {app.image:<25} {status:<16} {app.port or '-':<15} "
            f"{app.domain or '-':<25} {app.created_at}"
        )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="finks", description="finks - lightweight self-hosting on Docker")
    p.add_argument("--version", action="version", version=f"finks {__version__}")
    sub = p.add_subparsers(dest="cmd", required=True)

    # app
    s_app = sub.add_parser("app", help="Application deployment and management")
    app_sub = s_app.add_subparsers(dest="app_cmd", required=True)

    s_deploy = app_sub.add_parser("deploy", help="Deploy an application from a Docker image")
    s_deploy.add_argument("image")
    s_deploy.add_argument("--name", required=True, help="Name of the application")
    s_deploy.add_argument("-p", "--port", default=None, help="Port mapping (e.g. 8080:80)")
    s_deploy.add_argument("-e", "--env", action="append", default=[], help="Environment variable KEY=VALUE")
    s_deploy.add_argument("-v", "--volume", action="append", default=[], help="Volume mount /host:/container")
    s_deploy.add_argument("--domain", default=None, help="Route this host to the app through the proxy")
    s_deploy.add_argument("--health-path", default=None, help="Proxy health check path (e.g. /health)")

    for name, help_text in (("start", "Start a stopped application"), ("stop", "Stop a running application"), ("show", "Show one application")):
        s = app_sub.add_parser(name, help=help_text)
        s.add_argument("name")

    s_rm = app_sub.add_parser("rm", help="Remove an application")
    s_rm.add_argument("name")
    s_rm.add_argument("-f", "--force", action="store_true", help="Force remove a running application")

    s_ps = app_sub.add_parser("ps", help="List all applications")
    s_ps.add_argument("--json", action="store_true", help="Print JSON instead of a table")

    # network
    s_net = sub.add_parser("network", help="Manage Docker networks")
    net_sub = s_net.add_subparsers(dest="net_cmd", required=True)
    net_sub.add_parser("list", help="List finks networks")
    s_nc = net_sub.add_parser("create", help="Create a network (named finks-<name>)")
    s_nc.add_argument("name")
    s_nc.add_argument("-d", "--driver", default="bridge", help="Network driver (bridge, overlay, ...)")
    s_nr = net_sub.add_parser("rm", help="Remove a network")
    s_nr.add_argument("name")
    for name, help_text in (("connect", "Connect a container to a network"), ("disconnect", "Disconnect a container from a network")):
        s = net_sub.add_parser(name, help=help_text)
        s.add_argument("network")
        s.add_argument("container")

    # proxy
    s_proxy = sub.add_parser("proxy", help="Manage the Traefik proxy")
    proxy_sub = s_proxy.add_subparsers(dest="proxy_cmd", required=True)
    s_pi = proxy_sub.add_parser("install", help="Install the Traefik proxy container")
    s_pi.add_argument("--managed", action="store_true", help="HTTPS with Let's Encrypt certificates")
    s_pi.add_argument("--email", default=None, help="ACME account email (managed mode)")
    s_ps2 = proxy_sub.add_parser("status", help="Check Traefik proxy status")
    s_ps2.add_argument("--no-probe", action="store_true", help="Skip the dashboard HTTP probe")
    s_pc = proxy_sub.add_parser("connect", help="Connect Traefik to an application network")
    s_pc.add_argument("network")

    # events
    s_ev = sub.add_parser("events", help="Show the event journal")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--app", default=None, help="Only events of this application")

    return p


def _run_app(args: argparse.Namespace, ctx: Context) -> int:
    rec = Reconciler(ctx)

    if args.app_cmd == "deploy":
        env = _parse_env(args.env)
        print(f"Deploying application '{args.name}' from image '{args.image}'...")
        app = rec.deploy(
            args.name,
            args.image,
            port=args.port,
            env=env,
            volumes=args.volume,
            domain=args.domain,
            health_path=args.health_path,
        )
        print(f"Application '{app.name}' deployed successfully.")
        if app.domain:
            print(f"   Routed at: {app.domain}")
        elif _host_port(app.port):
            print(f"   Available at: http://localhost:{_host_port(app.port)}")
        return 0

    if args.app_cmd == "start":
        rec.start(args.name)
        print(f"Application '{args.name}' started.")
        return 0

    if args.app_cmd == "stop":
        rec.stop(args.name)
        print(f"Application '{args.name}' stopped.")
        return 0

    if args.app_cmd == "rm":
        rec.remove(args.name, force=args.force)
        print(f"Application '{args.name}' removed.")
        return 0

    if args.app_cmd == "ps":
        apps = rec.list_apps()
        if args.json:
            _print([a.model_dump(mode="json") for a in apps])
        else:
            _print_apps(apps)
        return 0

    if args.app_cmd == "show":
        _print(rec.get(args.name).model_dump(mode="json"))
        return 0

    return 2


def _run_network(args: argparse.Namespace, ctx: Context) -> int:
    nets = NetworkProvisioner(ctx)

    if args.net_cmd == "list":
        found = nets.list_managed()
        if not found:
            print("No finks networks found.")
            return 0
        print(f"{'NAME':<25} {'NETWORK ID':<14} {'DRIVER':<10} {'SUBNET':<18} GATEWAY")
        for n in found:
            print(f"{n.name:<25} {n.id[:12]:<14} {n.driver:<10} {n.subnet or '-':<18} {n.gateway or '-'}")
        return 0

    if args.net_cmd == "create":
        info = nets.create(args.name, driver=args.driver)
        print(f"Network '{info.name}' created.")
        print(f"   Network ID: {info.id[:12]}")
        return 0

    if args.net_cmd == "rm":
        nets.remove(args.name)
        print(f"Network '{args.name}' removed.")
        return 0

    if args.net_cmd == "connect":
        nets.connect(args.network, args.container)
        print(f"Connected '{args.container}' to '{args.network}'.")
        return 0

    if args.net_cmd == "disconnect":
        nets.disconnect(args.network, args.container)
        print(f"Disconnected '{args.container}' from '{args.network}'.")
        return 0

    return 2


def _run_proxy(args: argparse.Namespace, ctx: Context) -> int:
    proxy = ProxyInstaller(ctx)

    if args.proxy_cmd == "install":
        mode = TLSMode.MANAGED if args.managed else TLSMode.LOCAL
        print("Installing Traefik proxy...")
        cfg = proxy.install(tls_mode=mode, email=args.email)
        print(f"Traefik proxy running ({cfg.tls_mode.value} TLS).")
        if cfg.tls_mode == TLSMode.LOCAL:
            print(f"Dashboard: http://localhost:{ctx.settings.dashboard_port}/dashboard/")
        return 0

    if args.proxy_cmd == "status":
        st = proxy.status(probe=not args.no_probe)
        if not st.installed:
            print("Traefik container is not installed.")
            print("Run 'finks proxy install' to install Traefik.")
            return 0
        _print(asdict(st))
        return 0

    if args.proxy_cmd == "connect":
        proxy.connect(args.network)
        print(f"Traefik connected to network '{args.network}'.")
        return 0

    return 2


def main(argv: list[str] | None = None, ctx: Context | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        ctx = ctx or build_context()
        if args.cmd == "app":
            return _run_app(args, ctx)
        if args.cmd == "network":
            return _run_network(args, ctx)
        if args.cmd == "proxy":
            return _run_proxy(args, ctx)
        if args.cmd == "events":
            _print(ctx.events.latest(limit=args.limit, app_name=args.app))
            return 0
    except FinksError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 2


def main_entry() -> None:
    raise SystemExit(main(sys.argv[1:]))


if __name__ == "__main__":
    main_entry()
