#!/usr/bin/env python3
"""
easyValet - Local PHP development sites on Linux
Main entry point
"""

import argparse
import os
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from services.certificate_authority import CertificateAuthority
from services.config_store import ConfigStore
from services.nginx_service import NginxService
from services.package_manager import detect_package_manager
from services.php_runtime_manager import PhpRuntimeManager, socket_name
from services.requirements import Requirements
from services.service_manager import detect_service_manager
from services.site_certificate_manager import SiteCertificateManager
from services.site_config_registry import SiteConfigRegistry
from services.site_manager import SiteManager
from services.stub_template_engine import StubTemplateEngine
from utils.command_line import CommandLine
from utils.constants import APP_NAME, APP_VERSION, COMMAND_TIMEOUT
from utils.errors import ValetError
from utils.filesystem import Filesystem
from utils.logger import init_logger
from utils.paths import ValetPaths


def init_application(paths: ValetPaths, verbose: bool = False) -> bool:
    """Initialize logging under the valet home directory."""
    try:
        init_logger(str(paths.log_dir), verbose=verbose)
        logger.debug("=" * 60)
        logger.debug(f"{APP_NAME} {APP_VERSION} starting")
        logger.debug(f"Home: {paths.home}")
        logger.debug(f"Python version: {sys.version}")
        return True
    except OSError as e:
        print(f"Failed to initialize application: {e}", file=sys.stderr)
        return False


def setup_exception_handler():
    """Route uncaught exceptions to the error log before exiting."""
    def handle_exception(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            # allow Ctrl+C
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return

        logger.opt(exception=(exc_type, exc_value, exc_traceback)).error("Uncaught exception occurred")
        print(f"Fatal error: {exc_value}. See the log files for details.", file=sys.stderr)
        sys.exit(1)

    sys.excepthook = handle_exception


class Valet:
    """Wires the services together once per invocation."""

    def __init__(self, paths: ValetPaths, timeout: int = COMMAND_TIMEOUT,
                 ignore_selinux: bool = False):
        self.paths = paths
        self.files = Filesystem()
        self.cli = CommandLine(timeout=timeout)
        self.services = detect_service_manager(self.cli)
        self.packages = detect_package_manager(self.cli)

        self.config = ConfigStore(paths, self.files)
        self.registry = SiteConfigRegistry(paths, self.files)
        self.engine = StubTemplateEngine(paths.stubs_dir, self.files)
        self.ca = CertificateAuthority(paths, self.cli, self.files)
        self.nginx = NginxService(paths, self.config, self.registry, self.engine,
                                  self.packages, self.services, self.cli, self.files)
        self.php = PhpRuntimeManager(paths, self.config, self.registry, self.engine,
                                     self.packages, self.services, self.cli, self.files,
                                     nginx=self.nginx)
        self.certificates = SiteCertificateManager(paths, self.config, self.ca, self.engine,
                                                   self.registry, self.php, self.cli, self.files)
        self.sites = SiteManager(paths, self.config, self.registry, self.engine,
                                 self.certificates, self.php, self.files)
        self.requirements = Requirements(paths, self.cli, ignore_selinux=ignore_selinux)


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------

def cmd_install(valet: Valet, args):
    valet.requirements.check()
    valet.config.install()
    valet.engine.ensure_templates()
    version = valet.php.current_version()
    valet.nginx.install(socket_name(version))
    valet.php.install(version)
    valet.certificates.regenerate_secured_sites_config()
    valet.nginx.restart()
    print(f"{APP_NAME} installed and running on PHP {version}")


def cmd_uninstall(valet: Valet, args):
    for version in valet.php.utilized_versions() + sorted(valet.php.isolated_versions()):
        valet.php.uninstall(version)
    valet.ca.revoke()
    valet.nginx.stop()
    if args.purge:
        valet.config.uninstall()
    print(f"{APP_NAME} uninstalled")


def cmd_secure(valet: Valet, args):
    hostname = valet.config.parse_domain(args.name)
    report = valet.certificates.secure(hostname)
    for failure in report.failures:
        print(f"Warning: could not trust the CA in {failure.store}: {failure.message}")
    valet.nginx.restart()
    print(f"The [{hostname}] site has been secured with a fresh TLS certificate")


def cmd_unsecure(valet: Valet, args):
    if args.all:
        hostnames = sorted(valet.certificates.secured())
    else:
        hostnames = [valet.config.parse_domain(args.name)]
    for hostname in hostnames:
        if valet.certificates.unsecure(hostname, preserve_kind=True):
            print(f"The [{hostname}] site will now serve traffic over HTTP")
        else:
            print(f"The [{hostname}] site is not secured")
    valet.nginx.restart()


def cmd_secured(valet: Valet, args):
    for hostname in sorted(valet.certificates.secured()):
        print(hostname)


def cmd_domain(valet: Valet, args):
    old_domain = valet.config.load().domain
    if not args.domain:
        print(old_domain)
        return
    state = valet.config.update(domain=args.domain)
    if state.domain == old_domain:
        print(f"Domain is already [{old_domain}]")
        return
    report = valet.certificates.re_secure_for_new_domain(old_domain, state.domain)
    valet.nginx.restart()
    print(f"Your domain has been updated to [{state.domain}]")
    for old_host, message in report.failed.items():
        print(f"Warning: {old_host} could not be re-secured: {message}")


def cmd_port(valet: Valet, args):
    key = "https_port" if args.https else "http_port"
    if args.port is None:
        print(valet.config.get(key))
        return
    valet.config.update(**{key: args.port})
    valet.nginx.install_server(socket_name(valet.php.current_version()))
    valet.certificates.regenerate_secured_sites_config()
    valet.nginx.restart()
    print(f"Your {'HTTPS' if args.https else 'HTTP'} port has been updated to [{args.port}]")


def cmd_use(valet: Valet, args):
    version = args.version
    if not version:
        version = valet.sites.php_rc_version(Path(os.getcwd()).name)
        if not version:
            print(valet.php.current_version())
            return
    rewritten = valet.php.switch_version(version, update_system_default=args.update_cli,
                                         ignore_extensions=args.ignore_ext)
    print(f"Valet is now using PHP {valet.php.current_version()} ({len(rewritten)} site(s) updated)")


def cmd_isolate(valet: Valet, args):
    name = args.site or Path(os.getcwd()).name
    hostname = valet.sites.isolate(name, args.version)
    valet.nginx.restart()
    print(f"The site [{hostname}] is now using PHP {valet.php.validate_isolation_version(args.version)}")


def cmd_unisolate(valet: Valet, args):
    name = args.site or Path(os.getcwd()).name
    hostname = valet.sites.unisolate(name)
    valet.nginx.restart()
    print(f"The site [{hostname}] is now using the default PHP version")


def cmd_isolated(valet: Valet, args):
    for hostname, version in sorted(valet.sites.isolated_sites().items()):
        print(f"{hostname}\t{version}")


def cmd_proxy(valet: Valet, args):
    hostname = valet.sites.proxy(args.name, args.target, secure=args.secure)
    valet.nginx.restart()
    scheme = "https" if args.secure else "http"
    print(f"Valet will now proxy [{scheme}://{hostname}] traffic to [{args.target}]")


def cmd_unproxy(valet: Valet, args):
    hostname = valet.sites.unproxy(args.name)
    valet.nginx.restart()
    print(f"Valet will no longer proxy [{hostname}]")


def cmd_proxies(valet: Valet, args):
    for hostname, target in sorted(valet.sites.proxies().items()):
        print(f"{hostname}\t{target}")


def cmd_park(valet: Valet, args):
    path = str(Path(args.path or os.getcwd()).resolve())
    valet.config.add_path(path, prepend=True)
    print(f"This directory has been added to Valet's paths: {path}")


def cmd_forget(valet: Valet, args):
    path = str(Path(args.path or os.getcwd()).resolve())
    valet.config.remove_path(path)
    print(f"This directory has been removed from Valet's paths: {path}")


def cmd_paths(valet: Valet, args):
    for path in valet.config.load().paths:
        print(path)


def cmd_link(valet: Valet, args):
    target = Path(args.path or os.getcwd()).resolve()
    name = args.name or target.name
    valet.config.add_path(str(valet.paths.sites_path()), prepend=True)
    valet.sites.link(str(target), name)
    domain = valet.config.load().domain
    print(f"A [{name}] symbolic link has been created in [{valet.paths.sites_path(name)}]")
    if args.secure:
        valet.certificates.secure(f"{name}.{domain}")
        valet.nginx.restart()


def cmd_links(valet: Valet, args):
    for name, directory in sorted(valet.sites.served_sites().items()):
        print(f"{name}\t{directory}")


def cmd_status(valet: Valet, args):
    status = valet.nginx.status(secured_sites=len(valet.certificates.secured()),
                                test_config=args.test)
    print(f"nginx: {status.status} (uptime {status.get_uptime_display()})")
    if args.test:
        print(f"config test: {status.config_test_status} {status.config_test_message or ''}".rstrip())
    print(f"php: {valet.php.current_version()} ({valet.php.status()})")
    print(f"sites: {status.total_sites} generated, {status.secured_sites} secured")
    for kind, count in sorted(status.sites_by_kind.items()):
        print(f"  {kind}: {count}")


def cmd_restart(valet: Valet, args):
    for version in valet.php.utilized_versions() + sorted(valet.php.isolated_versions()):
        valet.php.restart(version)
    valet.nginx.restart()
    print(f"{APP_NAME} services have been restarted")


def cmd_stop(valet: Valet, args):
    valet.nginx.stop()
    for version in valet.php.utilized_versions() + sorted(valet.php.isolated_versions()):
        valet.php.stop(version)
    print(f"{APP_NAME} services have been stopped")


def cmd_trust(valet: Valet, args):
    report = valet.ca.ensure()
    if report.created:
        print("A new local certificate authority has been created")
    for store in report.installed:
        print(f"Trusted in {store}")
    for failure in report.failures:
        print(f"Warning: could not trust the CA in {failure.store}: {failure.message}")


def cmd_untrust(valet: Valet, args):
    valet.ca.revoke()
    print("The local certificate authority is no longer trusted by the system")


def cmd_prune(valet: Valet, args):
    valet.config.prune()
    valet.sites.prune_links()
    repaired = [h for h in valet.registry.hostnames() if valet.certificates.reconcile(h)]
    for hostname in repaired:
        print(f"Repaired {hostname}")
    print("Configuration pruned")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="easyvalet", description=f"{APP_NAME} {APP_VERSION}")
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {APP_VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug output on the console")
    parser.add_argument("--timeout", type=int, default=COMMAND_TIMEOUT,
                        help="seconds before an external command is killed")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("install", help="install nginx, PHP-FPM and the base configuration")
    p.add_argument("--ignore-selinux", action="store_true")
    p.set_defaults(handler=cmd_install)

    p = sub.add_parser("uninstall", help="remove pools and stop the services")
    p.add_argument("--purge", action="store_true", help="also delete the valet home directory")
    p.set_defaults(handler=cmd_uninstall)

    p = sub.add_parser("secure", help="serve a site over HTTPS")
    p.add_argument("name")
    p.set_defaults(handler=cmd_secure)

    p = sub.add_parser("unsecure", help="serve a site over plain HTTP again")
    p.add_argument("name", nargs="?")
    p.add_argument("--all", action="store_true")
    p.set_defaults(handler=cmd_unsecure)

    sub.add_parser("secured", help="list secured sites").set_defaults(handler=cmd_secured)

    p = sub.add_parser("domain", help="show or change the top level domain")
    p.add_argument("domain", nargs="?")
    p.set_defaults(handler=cmd_domain)

    p = sub.add_parser("port", help="show or change the HTTP (or HTTPS) port")
    p.add_argument("port", nargs="?", type=int)
    p.add_argument("--https", action="store_true")
    p.set_defaults(handler=cmd_port)

    p = sub.add_parser("use", help="switch the default PHP version")
    p.add_argument("version", nargs="?")
    p.add_argument("--update-cli", action="store_true", help="also point the system php at it")
    p.add_argument("--ignore-ext", action="store_true", help="skip installing common extensions")
    p.set_defaults(handler=cmd_use)

    p = sub.add_parser("isolate", help="pin a site to its own PHP version")
    p.add_argument("version")
    p.add_argument("--site")
    p.set_defaults(handler=cmd_isolate)

    p = sub.add_parser("unisolate", help="return a site to the default PHP version")
    p.add_argument("--site")
    p.set_defaults(handler=cmd_unisolate)

    sub.add_parser("isolated", help="list isolated sites").set_defaults(handler=cmd_isolated)

    p = sub.add_parser("proxy", help="proxy a site to an upstream")
    p.add_argument("name")
    p.add_argument("target")
    p.add_argument("--secure", action="store_true")
    p.set_defaults(handler=cmd_proxy)

    p = sub.add_parser("unproxy", help="remove a proxy site")
    p.add_argument("name")
    p.set_defaults(handler=cmd_unproxy)

    sub.add_parser("proxies", help="list proxy sites").set_defaults(handler=cmd_proxies)

    p = sub.add_parser("park", help="serve every directory below a path")
    p.add_argument("path", nargs="?")
    p.set_defaults(handler=cmd_park)

    p = sub.add_parser("forget", help="stop serving a parked path")
    p.add_argument("path", nargs="?")
    p.set_defaults(handler=cmd_forget)

    sub.add_parser("paths", help="list parked paths").set_defaults(handler=cmd_paths)

    p = sub.add_parser("link", help="serve a single directory under a name")
    p.add_argument("name", nargs="?")
    p.add_argument("--path")
    p.add_argument("--secure", action="store_true")
    p.set_defaults(handler=cmd_link)

    sub.add_parser("links", help="list served sites").set_defaults(handler=cmd_links)

    p = sub.add_parser("status", help="show nginx and PHP state")
    p.add_argument("--test", action="store_true", help="also run nginx -t")
    p.set_defaults(handler=cmd_status)

    sub.add_parser("restart", help="restart nginx and PHP-FPM").set_defaults(handler=cmd_restart)
    sub.add_parser("stop", help="stop nginx and PHP-FPM").set_defaults(handler=cmd_stop)
    sub.add_parser("trust", help="create and trust the local CA").set_defaults(handler=cmd_trust)
    sub.add_parser("untrust", help="remove the local CA from the OS store").set_defaults(handler=cmd_untrust)
    sub.add_parser("prune", help="drop missing paths and repair site files").set_defaults(handler=cmd_prune)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main function."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "unsecure" and not args.all and not args.name:
        parser.error("unsecure needs a site name or --all")

    paths = ValetPaths()
    if not init_application(paths, verbose=args.verbose):
        return 1
    setup_exception_handler()

    try:
        valet = Valet(paths, timeout=args.timeout,
                      ignore_selinux=getattr(args, "ignore_selinux", False))
        args.handler(valet, args)
    except ValetError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
