import argparse
import logging
import signal
import sys
from typing import List, Optional, Sequence

from PySide6.QtCore import QCoreApplication, QTimer

from askpass import install_askpass_helper
from controller import BrewController
from errors import BrewError
from models import Package, PackageType
from providers import BrewService
from qt_bridge import ControllerSignals, RefreshThread
from settings import settings

logger = logging.getLogger("brewdeck")


def _setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _print_packages(packages: Sequence[Package]):
    for pkg in sorted(packages, key=lambda p: p.name.lower()):
        size = pkg.formatted_size or "-"
        version = pkg.installed_version or pkg.latest_version or "-"
        print(f"{pkg.name}\t{pkg.type.value}\t{version}\t{size}")


def _cmd_list(controller: BrewController, args) -> int:
    if not controller.refresh():
        print(f"error: {controller.error}", file=sys.stderr)
        return 1
    _print_packages(controller.installed_packages)
    print(f"Total: {controller.formatted_total_size}")
    return 0


def _cmd_outdated(controller: BrewController, args) -> int:
    for item in controller.service.fetch_outdated_packages():
        print(f"{item.name}\t{item.type.value}\t{item.installed_version} -> {item.latest_version}")
    return 0


def _cmd_search(controller: BrewController, args) -> int:
    results = controller.search(args.query)
    if controller.error:
        print(f"error: {controller.error}", file=sys.stderr)
        return 1
    _print_packages(results)
    return 0


def _cmd_sizes(controller: BrewController, args) -> int:
    index = controller.service.fetch_package_sizes()
    for name in sorted(index):
        print(f"{index[name]}\t{name}")
    return 0


def _run_operation(controller: BrewController, func, *params) -> int:
    controller.subscribe_log(lambda text: print(text, end="", flush=True))
    status = func(*params)
    if controller.error:
        print(f"error: {controller.error}", file=sys.stderr)
    return 0 if status == 0 else 1


def _cmd_install(controller: BrewController, args) -> int:
    return _run_operation(controller, controller.install, args.name)


def _cmd_uninstall(controller: BrewController, args) -> int:
    package_type = PackageType.CASK if args.cask else PackageType.FORMULA
    return _run_operation(controller, controller.uninstall, Package(name=args.name, type=package_type))


def _cmd_upgrade(controller: BrewController, args) -> int:
    if args.name:
        return _run_operation(controller, controller.upgrade, args.name)
    return _run_operation(controller, controller.upgrade_all)


def _cmd_auto_update(controller: BrewController, args) -> int:
    if args.action == "on":
        # Persist only; the loop itself runs inside "brewdeck daemon".
        settings.set_auto_update_enabled(True)
    elif args.action == "off":
        settings.set_auto_update_enabled(False)
    print(controller.auto_update_status_message)
    return 0


def _cmd_daemon(controller: BrewController, args) -> int:
    app = QCoreApplication.instance() or QCoreApplication([sys.argv[0]])

    signals = ControllerSignals(controller)
    signals.log_appended.connect(lambda text: print(text, end="", flush=True))
    signals.error_raised.connect(lambda message: print(f"error: {message}", file=sys.stderr))

    refresh = RefreshThread(controller)
    refresh.finished_with.connect(lambda pkgs: logger.info("Loaded %d installed packages", len(pkgs)))

    # Let the Python interpreter run periodically so Ctrl+C is handled.
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    keepalive = QTimer()
    keepalive.timeout.connect(lambda: None)
    keepalive.start(250)

    if not controller.auto_update_enabled:
        print("Auto-update is disabled; enable it with 'brewdeck auto-update on'.", file=sys.stderr)

    app.aboutToQuit.connect(controller.close)
    refresh.start()
    controller.scheduler.resume()
    code = app.exec()
    refresh.wait()
    return code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="brewdeck", description="BrewDeck - Homebrew companion")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List installed packages with their size on disk.").set_defaults(func=_cmd_list)
    sub.add_parser("outdated", help="List outdated packages.").set_defaults(func=_cmd_outdated)

    p = sub.add_parser("search", help="Search formulae and casks.")
    p.add_argument("query")
    p.set_defaults(func=_cmd_search)

    sub.add_parser("sizes", help="Show the size index built from du.").set_defaults(func=_cmd_sizes)

    p = sub.add_parser("install", help="Install a package.")
    p.add_argument("name")
    p.set_defaults(func=_cmd_install)

    p = sub.add_parser("uninstall", help="Uninstall a package.")
    p.add_argument("name")
    p.add_argument("--cask", action="store_true", help="Uninstall a cask (with --zap).")
    p.set_defaults(func=_cmd_uninstall)

    p = sub.add_parser("upgrade", help="Upgrade one package or everything outdated.")
    p.add_argument("name", nargs="?")
    p.set_defaults(func=_cmd_upgrade)

    p = sub.add_parser("auto-update", help="Show or change the auto-update setting.")
    p.add_argument("action", choices=["on", "off", "status"], nargs="?", default="status")
    p.set_defaults(func=_cmd_auto_update)

    sub.add_parser(
        "daemon",
        help="Stay in the foreground and run the daily auto-update loop.",
    ).set_defaults(func=_cmd_daemon)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    install_askpass_helper()
    try:
        controller = BrewController(service=BrewService(config=settings), config=settings)
        return args.func(controller, args)
    except BrewError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
