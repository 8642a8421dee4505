"""CLI entrypoint for k8s-secret-sync."""
import sys
import argparse
import logging
import signal
import threading

from .. import __version__ as VERSION
from .validators import validate_kubeconfig, validate_log_level

# Configure logging to stderr
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    stream=sys.stderr
)
logger = logging.getLogger(__name__)


def _load_config_or_exit():
    """Load configuration, exiting with code 2 if it is invalid."""
    from k8s_secret_sync.sync.domains.config_loader import ConfigError, load_config

    try:
        return load_config()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


def cmd_version(args):
    """Show version information."""
    print(f"k8s-secret-sync {VERSION}")


def cmd_config_show(args):
    """Show the effective configuration."""
    config = _load_config_or_exit()

    print(f"Config file: {config.source or '(none, environment and defaults only)'}")
    print("\nAnnotation keys:")
    print(f"  prefix:        {config.annotations.prefix}")
    print(f"  provider name: {config.annotations.provider_name}")
    print(f"  provider ref:  {config.annotations.provider_ref}")
    print(f"  secret key:    {config.annotations.secret_key}")
    print(f"\nDefault secret data key: {config.default_secret_key}")
    print(f"Poll interval: {config.poll_interval}s")
    print(f"Watch namespace: {config.watch_namespace or '(all namespaces)'}")
    print(f"Providers: {', '.join(config.providers)}")
    if "op" in config.providers:
        print(f"  op token variable: {config.op_token_env}")
    if "gcp" in config.providers:
        print(f"  gcp project: {config.gcp_project_id or '(not set, full references required)'}")
    print(f"Log level: {config.log_level}")


def cmd_config_validate(args):
    """Validate configuration and report the result."""
    _load_config_or_exit()
    print("Configuration is valid")


def cmd_providers_list(args):
    """List providers enabled by the configuration."""
    from k8s_secret_sync.sync.workflows.bootstrap import build_registry

    config = _load_config_or_exit()
    for name in build_registry(config).names():
        print(name)


def cmd_run(args):
    """Start the sync loop and block until SIGINT/SIGTERM."""
    from k8s_secret_sync.sync.domains.k8s_client import BootstrapError
    from k8s_secret_sync.sync.workflows.bootstrap import create_watcher

    validate_kubeconfig(args.kubeconfig)
    config = _load_config_or_exit()

    level = validate_log_level(args.log_level or config.log_level)
    logging.getLogger().setLevel(level)

    logger.info(f"Starting k8s-secret-sync {VERSION}")
    stop_event = threading.Event()
    try:
        watcher = create_watcher(config, kubeconfig=args.kubeconfig, stop_event=stop_event)
    except BootstrapError as e:
        logger.error(f"Startup failed: {e}")
        sys.exit(1)

    def _shutdown(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        watcher.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    try:
        watcher.run()
    finally:
        watcher.reconciler.close()
    logger.info("Shutting down")


def main():
    """Main CLI entrypoint.

    Exit codes:
        0 - Success
        1 - Runtime errors (cluster unreachable, missing credentials, etc.)
        2 - Usage errors (invalid arguments, invalid configuration, etc.)
    """
    parser = argparse.ArgumentParser(
        prog="k8s-secret-sync",
        description="Sync annotated Kubernetes Secrets from external secret providers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit codes:
  0 - Success
  1 - Runtime error (cluster unreachable, missing credentials, etc.)
  2 - Usage error (invalid arguments, invalid configuration, etc.)

Environment variables:
  KSS_CONFIG_FILE                          - Optional YAML config file
  KSS_SECRET_ANNOTATION_PREFIX             - Annotation prefix
  KSS_SECRET_ANNOTATION_KEY_PROVIDER_NAME  - Provider name annotation key
  KSS_SECRET_ANNOTATION_KEY_PROVIDER_REF   - Provider reference annotation key
  KSS_SECRET_ANNOTATION_KEY_SECRET_KEY     - Destination data key annotation key
  KSS_DEFAULT_SECRET_DATA_KEY              - Default destination data key (value)
  KSS_POLL_INTERVAL                        - Resync interval in seconds (300)
  KSS_WATCH_NAMESPACE                      - Only watch this namespace
  KSS_PROVIDERS                            - Enabled providers (op)
  OP_SERVICE_ACCOUNT_TOKEN                 - 1Password service account token
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # version command
    _version_parser = subparsers.add_parser(
        "version",
        help="Show version information",
        description="Display the current version of k8s-secret-sync"
    )

    # run command
    run_parser = subparsers.add_parser(
        "run",
        help="Start syncing secrets",
        description="""
Watch Secrets in the cluster and fill in values from external providers.

In-cluster configuration is used when available, otherwise the kubeconfig
file. Runs until SIGINT or SIGTERM.
        """
    )
    run_parser.add_argument(
        "--kubeconfig",
        help="Path to a kubeconfig file (ignored when running in-cluster)"
    )
    run_parser.add_argument(
        "--log-level",
        help="Log level (DEBUG, INFO, WARNING, ERROR); overrides KSS_LOG_LEVEL"
    )

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration inspection",
        description="Inspect k8s-secret-sync configuration"
    )
    config_subparsers = config_parser.add_subparsers(dest="config_command")

    _config_show_parser = config_subparsers.add_parser(
        "show",
        help="Show effective configuration",
        description="Display configuration after applying the config file and environment overrides"
    )
    _config_validate_parser = config_subparsers.add_parser(
        "validate",
        help="Validate configuration",
        description="Validate configuration; exits 2 if it is invalid"
    )

    # providers command
    providers_parser = subparsers.add_parser(
        "providers",
        help="Secret provider operations",
        description="Inspect configured secret providers"
    )
    providers_subparsers = providers_parser.add_subparsers(dest="providers_command")
    _providers_list_parser = providers_subparsers.add_parser(
        "list",
        help="List enabled providers",
        description="List the provider names that may appear in the provider annotation"
    )

    args = parser.parse_args()

    # If no command provided, show help and exit with usage error code
    if not args.command:
        parser.print_help()
        sys.exit(2)

    # Route to command handlers
    try:
        if args.command == "version":
            cmd_version(args)
        elif args.command == "run":
            cmd_run(args)
        elif args.command == "config":
            if args.config_command == "show":
                cmd_config_show(args)
            elif args.config_command == "validate":
                cmd_config_validate(args)
            else:
                config_parser.print_help()
                sys.exit(2)
        elif args.command == "providers":
            if args.providers_command == "list":
                cmd_providers_list(args)
            else:
                providers_parser.print_help()
                sys.exit(2)
        else:
            parser.print_help()
            sys.exit(2)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
