"""Command-line entry points for the store checkout.

The module wires argparse sub-commands to the settlement engine and hosts the
line-based shopping console. Parsing of ``[name-quantity]`` input and receipt
formatting live here as well; the engine itself never reads or prints text.
"""

from __future__ import annotations

import argparse
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log, setup_excel
from .models import (
    InvalidRequestError,
    Moment,
    ProductView,
    PurchaseLineRequest,
    Receipt,
    SettlementError,
)


Prompt = Callable[[str], str]
Output = Callable[[str], None]

_PURCHASE_ITEM = r"\[[^\[\],-]+-\d+\]"
PURCHASE_INPUT_PATTERN = re.compile(rf"{_PURCHASE_ITEM}(?:,{_PURCHASE_ITEM})*")
PURCHASE_ITEM_PATTERN = re.compile(r"\[([^\[\],-]+)-(\d+)\]")

RECEIPT_WIDTH = 40


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="store-cli",
        description="Checkout console for the convenience store.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to searching upwards from the working directory).",
    )
    return parser


def configure_subcommands(parser: argparse.ArgumentParser) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    specs = [
        register_products_command(),
        register_shop_command(),
        register_init_command(),
    ]
    for spec in specs:
        spec.register(subparsers)
    return build_command_table(specs)


def register_products_command() -> CommandSpec:
    """Describe the ``products`` listing command."""
    name = "products"
    help_text = "List products, prices, stock and promotions."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_products)


def register_shop_command() -> CommandSpec:
    """Describe the interactive ``shop`` command."""
    name = "shop"
    help_text = "Start an interactive shopping session."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_shop)


def register_init_command() -> CommandSpec:
    """Describe the ``init`` command that writes a config and workbook."""
    name = "init"
    help_text = "Create config.ini and a store workbook."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--directory", type=Path, default=Path.cwd(), help="Where to create the files.")
        parser.add_argument("--workbook", default="store_data.xlsx", help="Workbook file name.")
        parser.add_argument("--store-name", default="W Convenience Store")
        parser.add_argument(
            "--source-dir",
            type=Path,
            default=None,
            help="Seed from products.md and promotions.md in this directory.",
        )
        parser.add_argument("--force", action="store_true", help="Overwrite existing files.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_init)


def build_command_table(specs: Iterable[CommandSpec]) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def dispatch_command(args: argparse.Namespace, command_table: Mapping[str, CommandSpec]) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(args)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Load and schema-check the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# Input parsing
# ---------------------------------------------------------------------------


def parse_purchase_requests(text: str) -> List[PurchaseLineRequest]:
    """Parse ``[name-quantity],[name-quantity]`` into request objects.

    Raises:
        InvalidRequestError: If the text does not follow the format or a
            quantity is zero.
    """
    candidate = (text or "").strip()
    if not PURCHASE_INPUT_PATTERN.fullmatch(candidate):
        raise InvalidRequestError(f"Invalid purchase format: {candidate!r}. Use [name-quantity],[name-quantity]")

    requests = []
    for match in PURCHASE_ITEM_PATTERN.finditer(candidate):
        quantity = int(match.group(2))
        if quantity <= 0:
            raise InvalidRequestError(f"Quantity for '{match.group(1)}' must be greater than zero")
        requests.append(PurchaseLineRequest(product_name=match.group(1).strip(), quantity=quantity))
    return requests


def parse_yes_no(text: str) -> bool:
    """Interpret a ``Y``/``N`` answer.

    Raises:
        InvalidRequestError: For anything other than ``Y`` or ``N``.
    """
    answer = (text or "").strip().upper()
    if answer not in ("Y", "N"):
        raise InvalidRequestError(f"Please answer Y or N, got {text!r}")
    return answer == "Y"


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def format_amount(amount: int) -> str:
    return f"{amount:,}"


def format_product_listing(views: Sequence[ProductView]) -> List[str]:
    """Render one display line per product row."""
    lines = []
    for view in views:
        stock = f"{view.quantity} units" if view.in_stock else "Out of stock"
        parts = [f"- {view.name}", format_amount(view.price), stock]
        if view.promotion_name is not None:
            parts.append(view.promotion_name)
        lines.append(" ".join(parts))
    return lines


def format_receipt(receipt: Receipt, store_name: str) -> List[str]:
    """Render a receipt as text lines."""
    rule = "=" * RECEIPT_WIDTH
    lines = [f"{'=' * 14}{store_name:^12}{'=' * 14}", f"{'Item':<20}{'Qty':>6}{'Amount':>14}"]
    for line in receipt.lines:
        lines.append(f"{line.product_name:<20}{line.paid_quantity:>6}{format_amount(line.amount):>14}")

    if receipt.free_lines:
        lines.append(f"{'=' * 14}{'Free items':^12}{'=' * 14}")
        for free in receipt.free_lines:
            lines.append(f"{free.product_name:<20}{free.free_quantity:>6}")

    lines.append(rule)
    lines.append(f"{'Total':<20}{receipt.total_quantity:>6}{format_amount(receipt.total_amount):>14}")
    lines.append(f"{'Promotion discount':<26}{'-' + format_amount(receipt.promotion_discount_amount):>14}")
    lines.append(f"{'Membership discount':<26}{'-' + format_amount(receipt.membership_discount_amount):>14}")
    lines.append(f"{'Amount due':<26}{format_amount(receipt.final_amount):>14}")
    return lines


# ---------------------------------------------------------------------------
# Interactive console
# ---------------------------------------------------------------------------


def ask_yes_no(question: str, prompt: Prompt, say: Output) -> bool:
    """Ask ``question`` until a valid ``Y``/``N`` answer arrives."""
    while True:
        try:
            return parse_yes_no(prompt(f"{question} (Y/N)\n"))
        except InvalidRequestError as error:
            say(f"[ERROR] {error}")


def confirm_adjustments(
    context: core_logic.RuntimeContext,
    requests: Sequence[PurchaseLineRequest],
    prompt: Prompt,
    say: Output,
    *,
    now: Optional[Moment] = None,
) -> List[PurchaseLineRequest]:
    """Offer promotion top-ups and confirm normal-price units line by line.

    A declined normal-price warning removes those units from the line, and a
    line reduced to nothing is dropped.
    """
    confirmed: List[PurchaseLineRequest] = []
    for request in requests:
        extra = core_logic.check_promotion_top_up(context, request.product_name, request.quantity, now=now)
        if extra is not None:
            if ask_yes_no(
                f"You can get {extra} more '{request.product_name}' for free. Add them?",
                prompt,
                say,
            ):
                request.add_quantity(extra)
            confirmed.append(request)
            continue

        regular = core_logic.warnable_non_promotable_units(context, request.product_name, request.quantity, now=now)
        if regular > 0 and not ask_yes_no(
            f"{regular} unit(s) of '{request.product_name}' will be charged without promotion. Buy them anyway?",
            prompt,
            say,
        ):
            remaining = request.quantity - regular
            if remaining > 0:
                confirmed.append(PurchaseLineRequest(product_name=request.product_name, quantity=remaining))
            continue
        confirmed.append(request)
    return confirmed


def run_single_purchase(
    context: core_logic.RuntimeContext,
    prompt: Prompt,
    say: Output,
    *,
    now: Optional[Moment] = None,
) -> Receipt:
    """Read one purchase, settle it, and print the receipt.

    Input and settlement errors are reported and the shopper is asked again.
    """
    while True:
        try:
            requests = parse_purchase_requests(
                prompt("\nEnter product names and quantities. (e.g. [Cola-2],[Potato Chips-1])\n")
            )
            core_logic.validate_requests(context, requests, now=now)
            requests = confirm_adjustments(context, requests, prompt, say, now=now)
            if not requests:
                raise InvalidRequestError("No items left to purchase")
            membership = ask_yes_no("\nApply membership discount?", prompt, say)
            receipt = core_logic.settle(context, requests, membership, now=now)
        except SettlementError as error:
            say(f"[ERROR] {error}")
            continue
        for line in format_receipt(receipt, context.settings.store_name):
            say(line)
        return receipt


def run_shopping_session(
    context: core_logic.RuntimeContext,
    prompt: Prompt = input,
    say: Output = print,
    *,
    now: Optional[Moment] = None,
) -> List[Receipt]:
    """Loop over purchases until the shopper is done."""
    receipts: List[Receipt] = []
    while True:
        say(f"Hello. Welcome to {context.settings.store_name}.")
        say("Here are the products we have:\n")
        for line in format_product_listing(core_logic.list_products(context, now=now)):
            say(line)
        receipts.append(run_single_purchase(context, prompt, say, now=now))
        if not ask_yes_no("\nThank you. Would you like to buy anything else?", prompt, say):
            return receipts


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_products(args: argparse.Namespace) -> int:
    """Print the product listing."""
    context = load_runtime_context(getattr(args, "config", None))
    for line in format_product_listing(core_logic.list_products(context)):
        print(line)
    return 0


def run_shop(args: argparse.Namespace) -> int:
    """Start the interactive console; end-of-input closes the session."""
    context = load_runtime_context(getattr(args, "config", None))
    try:
        run_shopping_session(context)
    except EOFError:
        log.info("Shopping session ended by end of input")
    return 0


def run_init(args: argparse.Namespace) -> int:
    """Write ``config.ini`` and the workbook into ``--directory``."""
    workbook_path, config_path = setup_excel.create_store_files(
        Path(args.directory),
        workbook=args.workbook,
        store_name=args.store_name,
        source_dir=args.source_dir,
        overwrite=args.force,
    )
    print(f"Created '{workbook_path}' and '{config_path}'.")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into exit codes."""
    log.error("%s", error)
    if isinstance(error, SettlementError):
        return 2
    if isinstance(error, FileNotFoundError):
        return 3
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        return dispatch_command(args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
