# cli.py
# Interactive cart shell. Every running shell is one "tab": they share the
# cart through the same storage file and see each other's changes live.
import asyncio
import shlex
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.text import Text
from rich import box

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.patch_stdout import patch_stdout
from prompt_toolkit.styles import Style as PromptStyle

from storefront.cart import CartStore
from storefront.checkout import (
    CheckoutForm, CheckoutOrchestrator, PAYMENT_METHODS, SHIPPING_METHODS, default_shipping_method,
)
from storefront.config import settings
from storefront.confirmation import OrderConfirmation
from storefront.errors import CheckoutError, CheckoutValidationError
from storefront.events import (
    CART_CLEARED, CART_SYNCED, ERROR, ITEM_ADDED, ITEM_REMOVED, ITEM_UPDATED, STORAGE_ERROR,
)
from storefront.logger import setup_logger
from storefront.models import Totals
from storefront.storage import FileStorage
from storefront_sdk.client import StorefrontClient

console = Console()

# Demo catalog used when no API is configured
CATALOG: List[Dict[str, Any]] = [
    {"id": "w-001", "name": "Classic Leather Watch", "price": 1250000, "image": "assets/watch1.jpg", "category": "watches"},
    {"id": "w-002", "name": "Steel Chronograph", "price": 2300000, "image": "assets/watch2.jpg", "category": "watches"},
    {"id": "b-001", "name": "Canvas Tote Bag", "price": 350000, "image": "assets/bag1.jpg", "category": "bags"},
    {"id": "s-001", "name": "Suede Loafers", "price": 780000, "image": "assets/shoes1.jpg", "category": "shoes"},
    {"id": "l-001", "name": "Slim Bifold Wallet", "price": 180000, "image": "assets/wallet1.jpg", "category": "wallets"},
]

ERROR_MESSAGES = {
    "invalid-product": "Invalid product data",
    "cart-full": "Cart is full (max {max_items} items)",
    "max-quantity": "At most {max_quantity} per product",
    "not-found": "Product not found in cart",
    "add-failed": "Could not add the product",
    "remove-failed": "Could not remove the product",
    "update-failed": "Could not update the quantity",
    "clear-failed": "Could not empty the cart",
}

custom_style = PromptStyle.from_dict({
    'completion-menu.completion': 'bg:#008888 #ffffff',
    'completion-menu.completion.current': 'bg:#00aaaa #000000',
})

COMMANDS = ["products", "cart", "add", "inc", "dec", "set", "remove", "clear", "checkout", "orders", "help", "quit"]


def format_price(amount) -> str:
    return f"Rp {amount:,.0f}".replace(",", ".")


# ---------------------------
# Display helpers
# ---------------------------
def show_products(products: List[Dict[str, Any]]):
    table = Table(title="📦 Products", box=box.ROUNDED, header_style="bold cyan", show_lines=True)
    table.add_column("ID", style="dim", width=10)
    table.add_column("Name", style="bold", width=26)
    table.add_column("Category", width=10)
    table.add_column("Price", justify="right", width=16)
    for p in products:
        table.add_row(p["id"], p["name"], p.get("category", "general"), format_price(p["price"]))
    console.print(table)


def show_cart(cart: CartStore):
    summary = cart.get_summary()
    title = Text()
    title.append("🛒 Cart", style="bold")
    title.append(f" - {summary['count']} items - Total: {format_price(summary['total'])}", style="bold green")

    if summary["is_empty"]:
        console.print(Panel("Your cart is empty 🛍️", title=title, style="blue"))
        return

    table = Table(box=box.ROUNDED, header_style="bold blue", show_lines=True)
    table.add_column("ID", style="dim", width=10)
    table.add_column("Product", style="bold", width=26)
    table.add_column("Qty", justify="right", width=5)
    table.add_column("Price", justify="right", width=16)
    table.add_column("Subtotal", justify="right", width=16)
    for item in summary["items"]:
        table.add_row(item.id, item.name, str(item.quantity), format_price(item.price), format_price(item.line_total))
    console.print(Panel(table, title=title, border_style="blue"))


def show_totals(totals: Totals):
    table = Table.grid(padding=(0, 2))
    table.add_column(width=16)
    table.add_column(justify="right", width=18)
    table.add_row("Subtotal", format_price(totals.subtotal))
    table.add_row("Shipping", format_price(totals.shipping))
    table.add_row("Tax", format_price(totals.tax))
    table.add_row("Discount", "-" + format_price(totals.discount))
    table.add_row("[bold]Total[/bold]", f"[bold green]{format_price(totals.grand_total)}[/bold green]")
    console.print(Panel(table, title="💳 Order total", border_style="yellow"))


def show_status(message: str, is_success: bool = True):
    style = "green" if is_success else "red"
    console.print(Panel.fit(f"[{style}]{message}[/{style}]", title="Status"))


# ---------------------------
# Cart event subscribers
# ---------------------------
def subscribe(cart: CartStore):
    def on_added(data):
        show_status(f"Added {data['product']['name']} x{data['quantity']}")

    def on_removed(data):
        show_status(f"🗑️ \"{data['item'].name}\" removed")

    def on_updated(data):
        show_status(f"Quantity of {data['id']} is now {data['quantity']}")

    def on_cleared(data):
        if not data.get("silent"):
            show_status(f"🗑️ {data['item_count']} products removed from the cart")

    def on_synced(data):
        console.print("[dim]🔄 Cart synced from another shell[/dim]")
        show_cart(cart)

    def on_error(data):
        template = ERROR_MESSAGES.get(data.get("type"), "Cart operation failed")
        show_status(template.format(**data), False)

    def on_storage_error(data):
        show_status(data.get("message", "Storage error"), False)

    cart.on(ITEM_ADDED, on_added)
    cart.on(ITEM_REMOVED, on_removed)
    cart.on(ITEM_UPDATED, on_updated)
    cart.on(CART_CLEARED, on_cleared)
    cart.on(CART_SYNCED, on_synced)
    cart.on(ERROR, on_error)
    cart.on(STORAGE_ERROR, on_storage_error)


# ---------------------------
# Checkout
# ---------------------------
async def ask(session: PromptSession, label: str, default: str = "") -> str:
    return (await session.prompt_async(f"{label}: ", default=default, style=custom_style)).strip()


async def run_checkout(session: PromptSession, cart: CartStore, checkout: CheckoutOrchestrator, confirmation: OrderConfirmation):
    if not cart.get_items():
        show_status("Cart is empty", False)
        return

    subtotal = cart.get_total()
    shipping_names = ", ".join(SHIPPING_METHODS)
    payment_names = ", ".join(PAYMENT_METHODS)
    fields = {
        "full_name": await ask(session, "Full name"),
        "email": await ask(session, "Email"),
        "phone": await ask(session, "Phone"),
        "address": await ask(session, "Address"),
        "city": await ask(session, "City"),
        "postal_code": await ask(session, "Postal code"),
        "shipping_method": await ask(session, f"Shipping ({shipping_names})", default_shipping_method(subtotal)),
        "payment_method": await ask(session, f"Payment ({payment_names})", "creditCard"),
        "promo_code": await ask(session, "Promo code (optional)"),
    }
    if fields["payment_method"] == "creditCard":
        fields["card_number"] = await ask(session, "Card number")
        fields["card_expiry"] = await ask(session, "Expiry (MM/YY)")
        fields["card_cvv"] = await ask(session, "CVV")

    async def confirm(totals: Totals) -> bool:
        show_totals(totals)
        return (await ask(session, "Pay now? [y/N]")).lower() in ("y", "yes")

    async def confirm_and_notify(totals: Totals) -> bool:
        accepted = await confirm(totals)
        if accepted:
            console.print("[yellow]⏳ Processing payment...[/yellow]")
        return accepted

    try:
        order = await checkout.place_order(CheckoutForm(**fields), confirm=confirm_and_notify)
    except CheckoutValidationError as e:
        for field, message in e.errors.items():
            console.print(f"[red]{field}[/red]: {message}")
        show_status("Please complete the form", False)
        return
    except CheckoutError as e:
        show_status(str(e), False)
        return

    shown = await confirmation.show()
    show_status(f"🎉 Payment successful! Order {order.order_id}")
    if shown is not None:
        console.print(Panel.fit(
            f"[bold]Order:[/bold] {shown.order_id}\n"
            f"[bold]Email:[/bold] {shown.customer_email}\n"
            f"[bold]Payment:[/bold] {shown.payment_method}\n"
            f"[bold]Ship to:[/bold] {shown.shipping_address}\n"
            f"[bold]Total:[/bold] {format_price(shown.total)}",
            title="📦 Order confirmed", border_style="green"
        ))


def show_orders(confirmation: OrderConfirmation):
    orders = confirmation.history()
    if not orders:
        console.print("[italic yellow]No orders found[/italic yellow]")
        return
    table = Table(title="📋 Orders", box=box.ROUNDED, header_style="bold yellow", show_lines=True)
    table.add_column("Order ID", style="dim", width=28)
    table.add_column("Date", width=20)
    table.add_column("Items", justify="right", width=6)
    table.add_column("Total", justify="right", width=16)
    for o in orders:
        table.add_row(o.order_id, o.date[:19], str(sum(i.get("quantity", 1) for i in o.items)), format_price(o.total))
    console.print(table)


def create_header():
    header = Table(show_header=False, box=box.ROUNDED)
    header.add_column("left", width=24)
    header.add_column("center", width=40)
    header.add_column("right", width=22)
    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    header.add_row("🛍️ storefront", f"[bold blue]Cart shell[/bold blue] [dim]{settings.storage_path}[/dim]", f"[dim]{now}[/dim]")
    return Panel(header, style="bold blue")


def show_help():
    console.print(
        "[bold cyan]products[/bold cyan] | [bold cyan]cart[/bold cyan] | "
        "[bold cyan]add[/bold cyan] ID [QTY] | [bold cyan]inc[/bold cyan] ID | [bold cyan]dec[/bold cyan] ID | "
        "[bold cyan]set[/bold cyan] ID QTY | [bold cyan]remove[/bold cyan] ID | [bold cyan]clear[/bold cyan] | "
        "[bold cyan]checkout[/bold cyan] | [bold cyan]orders[/bold cyan] | [bold cyan]quit[/bold cyan]"
    )


# ---------------------------
# Main loop
# ---------------------------
def find_product(product_id: str) -> Optional[Dict[str, Any]]:
    return next((p for p in CATALOG if p["id"] == product_id), None)


def parse_command(line: str) -> List[str]:
    """Split a prompt line into words; an unreadable line yields no words."""
    try:
        return shlex.split(line)
    except ValueError as e:
        show_status(f"Cannot read command: {e}", False)
        return []


async def handle(command: str, args: List[str], session, cart, checkout, confirmation) -> bool:
    if command == "products":
        show_products(CATALOG)
    elif command == "cart":
        show_cart(cart)
    elif command == "add" and args:
        product = find_product(args[0])
        if product is None:
            show_status(f"Unknown product {args[0]}", False)
        else:
            qty = args[1] if len(args) > 1 else 1
            await cart.add({**product, "quantity": qty})
    elif command in ("inc", "dec") and args:
        item = cart.get_item(args[0])
        if item is None:
            show_status("Product not found in cart", False)
        elif command == "inc":
            await cart.update(item.id, item.quantity + 1)
        elif item.quantity > 1:
            await cart.update(item.id, item.quantity - 1)
    elif command == "set" and len(args) == 2:
        await cart.update(args[0], args[1])
    elif command == "remove" and args:
        item = cart.get_item(args[0])
        if item is not None and (await ask(session, f'Remove "{item.name}"? [y/N]')).lower() not in ("y", "yes"):
            return True
        await cart.remove(args[0])
    elif command == "clear":
        if (await ask(session, "Empty the cart? [y/N]")).lower() in ("y", "yes"):
            await cart.clear()
    elif command == "checkout":
        await run_checkout(session, cart, checkout, confirmation)
    elif command == "orders":
        show_orders(confirmation)
    elif command in ("quit", "exit", "q"):
        return False
    else:
        show_help()
    return True


async def main():
    setup_logger(console=False)
    storage = FileStorage(settings.storage_path)
    context = storage.context()
    cart = CartStore(context)
    subscribe(cart)

    client = None
    if settings.submit_orders:
        client = StorefrontClient(base_url=settings.api_url, token=settings.api_token or None)
    checkout = CheckoutOrchestrator(cart, context, client=client)
    confirmation = OrderConfirmation(context, cart)

    console.clear()
    console.print(create_header())
    show_help()
    show_cart(cart)

    watcher = asyncio.create_task(storage.watch())
    session = PromptSession()
    completer = WordCompleter(COMMANDS + [p["id"] for p in CATALOG], ignore_case=True)
    try:
        with patch_stdout():
            while True:
                try:
                    line = await session.prompt_async("cart> ", completer=completer, style=custom_style)
                except (EOFError, KeyboardInterrupt):
                    break
                parts = parse_command(line)
                if not parts:
                    continue
                if not await handle(parts[0].lower(), parts[1:], session, cart, checkout, confirmation):
                    break
    finally:
        watcher.cancel()
        cart.close()
        console.print("[bold]👋 Bye[/bold]")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        sys.exit(0)
