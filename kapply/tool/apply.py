"""Kapply apply action."""

import logging
from argparse import (
    ArgumentParser,
    ArgumentTypeError,
    _SubParsersAction as SubParsersAction,
)
import pathlib
import re
import sys
from typing import cast

from kapply.client import KubectlClient
from kapply.client.kubectl import KUBECTL_BIN
from kapply.exceptions import KApplyException
from kapply.inventory import InventoryTemplate, find_inventory_template
from kapply.manifest import DEFAULT_NAMESPACE
from kapply.options import (
    ApplyOptions,
    DEFAULT_POLL_INTERVAL,
    parse_propagation_policy,
)
from kapply.orchestrator import Applier
from kapply.reader import demand_one_directory, read_path, read_stream

from .printers import PRINTERS, DEFAULT_PRINTER, get_printer


_LOGGER = logging.getLogger(__name__)

DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str) -> float:
    """Parse a duration such as `2s`, `1m30s` or `500ms` into seconds.

    A plain number is a number of seconds.
    """
    try:
        return float(value)
    except ValueError:
        pass
    pos = 0
    total = 0.0
    for match in DURATION_RE.finditer(value):
        if match.start() != pos:
            break
        total += float(match.group(1)) * DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(value):
        raise ArgumentTypeError(f"invalid duration: '{value}'")
    return total


class ApplyAction:
    """Apply a package of objects and prune those no longer in it."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "apply",
                usage="kapply apply (DIRECTORY | -) [options]",
                help="Apply a configuration to a resource by package directory or stdin",
                description=(
                    "Apply all objects in a package directory or stdin, prune "
                    "objects applied previously that are no longer in the package "
                    "and optionally wait for the objects to reconcile."
                ),
            ),
        )
        args.add_argument(
            "directory",
            help="Package directory, or '-' or nothing to read from stdin",
            nargs="*",
        )
        args.add_argument(
            "--output",
            "-o",
            choices=list(PRINTERS),
            default=DEFAULT_PRINTER,
            help="Output format of the command",
        )
        args.add_argument(
            "--poll-period",
            type=parse_duration,
            default=DEFAULT_POLL_INTERVAL,
            help="Polling period for resource statuses.",
        )
        args.add_argument(
            "--reconcile-timeout",
            type=parse_duration,
            default=0.0,
            help="Timeout threshold for waiting for all resources to reach the Current status.",
        )
        args.add_argument(
            "--no-prune",
            action="store_true",
            help="If true, do not prune previously applied objects.",
        )
        args.add_argument(
            "--prune-propagation-policy",
            default="Background",
            help="Propagation policy for pruning (Background, Foreground, Orphan)",
        )
        args.add_argument(
            "--prune-timeout",
            type=parse_duration,
            default=0.0,
            help="Timeout threshold for waiting for all pruned resources to be deleted",
        )
        args.add_argument(
            "--dry-run",
            action="store_true",
            help="Print the changes that would be made without making them",
        )
        args.add_argument(
            "--namespace",
            "-n",
            default=DEFAULT_NAMESPACE,
            help="Namespace for objects in the package that do not specify one",
        )
        args.add_argument(
            "--inventory-id",
            default=None,
            help="Label of the inventory, instead of an inventory template in the package",
        )
        args.add_argument(
            "--inventory-name",
            default="inventory",
            help="Name prefix of the inventory object, used with --inventory-id",
        )
        args.add_argument(
            "--inventory-namespace",
            default=DEFAULT_NAMESPACE,
            help="Namespace of the inventory object, used with --inventory-id",
        )
        args.add_argument(
            "--kubectl",
            default=KUBECTL_BIN,
            help="Path of the kubectl binary",
        )
        args.add_argument(
            "--context",
            default=None,
            help="Name of the kubeconfig context to use",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        directory: list[str],
        output: str,
        poll_period: float,
        reconcile_timeout: float,
        no_prune: bool,
        prune_propagation_policy: str,
        prune_timeout: float,
        dry_run: bool,
        namespace: str,
        inventory_id: str | None,
        inventory_name: str,
        inventory_namespace: str,
        kubectl: str,
        context: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        parse_propagation_policy(prune_propagation_policy)
        printer = get_printer(output)

        if (path := demand_one_directory(directory)) is not None:
            resources = await read_path(pathlib.Path(path), namespace)
        else:
            resources = await read_stream(sys.stdin, namespace=namespace)

        if inventory_id:
            template = InventoryTemplate(
                namespace=inventory_namespace, name=inventory_name, label=inventory_id
            )
        else:
            template, resources = find_inventory_template(resources)
        _LOGGER.debug("Using inventory %s", template)

        options = ApplyOptions(
            poll_interval=poll_period,
            reconcile_timeout=reconcile_timeout,
            prune_timeout=prune_timeout,
            no_prune=no_prune,
            dry_run=dry_run,
            prune_propagation_policy=prune_propagation_policy,
            # Only emit status events when waiting for status
            emit_status_events=reconcile_timeout != 0 or prune_timeout != 0,
        )
        applier = Applier(KubectlClient(kubectl=kubectl, context=context), template)
        outcome = await printer.print(applier.run(resources, options))
        if outcome is None or not outcome.succeeded:
            raise KApplyException(
                outcome.summary if outcome else "Run did not complete"
            )
