"""
ecsdeploy command line entry point.
"""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

from ecsdeploy.config.settings import Settings, get_settings
from ecsdeploy.core.errors import main_with_error_handling
from ecsdeploy.engine import ENGINES
from ecsdeploy.logging import bind_deployment, clear_deployment, configure_logging
from ecsdeploy.synth import FORMATS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ecsdeploy",
        description="Provision the hello/world services on ECS Fargate",
    )
    parser.add_argument(
        "--deployment",
        help="Deployment name (default: $STACK_NAME or appsignals-ecs-demo)",
    )
    parser.add_argument("--engine", choices=ENGINES, help="Provisioning engine")
    parser.add_argument("--region", help="AWS region")
    parser.add_argument(
        "--log-format", choices=["json", "console"], default="json", help="Log renderer"
    )
    subparsers = parser.add_subparsers(dest="command")

    synth_parser = subparsers.add_parser("synth", help="Write CloudFormation templates per unit")
    synth_parser.add_argument("--output-dir", "-o", help="Template directory")
    synth_parser.add_argument("--format", choices=FORMATS, default="json", help="Template format")

    plan_parser = subparsers.add_parser("plan", help="Preview changes (dry-run)")
    plan_parser.add_argument("--output", choices=["text", "json"], default="text",
                             help="Output format")

    subparsers.add_parser("deploy", help="Deploy every unit in dependency order")

    destroy_parser = subparsers.add_parser("destroy", help="Destroy every unit in reverse order")
    destroy_parser.add_argument(
        "--yes", "-y", action="store_true", help="Do not ask for confirmation"
    )

    outputs_parser = subparsers.add_parser("outputs", help="Show outputs of deployed units")
    outputs_parser.add_argument("--output", choices=["text", "json"], default="text",
                                help="Output format")

    verify_parser = subparsers.add_parser("verify", help="Probe both front doors over HTTP")
    verify_parser.add_argument("--timeout", type=float, help="Request timeout in seconds")

    return parser


def _settings_from_args(args: argparse.Namespace) -> Settings:
    settings = get_settings()
    overrides = {}
    if args.deployment:
        overrides["deployment_name"] = args.deployment
    if args.region:
        overrides["aws_region"] = args.region
    if args.engine:
        overrides["engine"] = args.engine
    return settings.model_copy(update=overrides) if overrides else settings


@main_with_error_handling()
def run(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    configure_logging(settings.log_level.upper(), json_output=args.log_format == "json")
    bind_deployment(settings.deployment_name, command=args.command)
    try:
        return _dispatch(args, settings)
    finally:
        clear_deployment()


def _dispatch(args: argparse.Namespace, settings: Settings) -> int:
    if args.command == "synth":
        from ecsdeploy.cli.synth import synth_command

        return synth_command(settings, output_dir=args.output_dir, template_format=args.format)

    if args.command == "plan":
        from ecsdeploy.cli.plan import plan_command

        return plan_command(settings, output_format=args.output)

    if args.command == "deploy":
        from ecsdeploy.cli.deploy import deploy_command

        return deploy_command(settings)

    if args.command == "destroy":
        from ecsdeploy.cli.deploy import destroy_command

        return destroy_command(settings, yes=args.yes)

    if args.command == "outputs":
        from ecsdeploy.cli.outputs import outputs_command

        return outputs_command(settings, output_format=args.output)

    if args.command == "verify":
        from ecsdeploy.cli.verify import verify_command

        return verify_command(settings, timeout=args.timeout)

    return 2


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        sys.exit(2)
    sys.exit(run(args))


if __name__ == "__main__":
    main()
