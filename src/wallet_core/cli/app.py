"""CLI for wallet-core - a self-custodial EVM wallet from the terminal."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from wallet_core.config import get_wallet_dir, load_config, resolve_chain, save_config
from wallet_core.errors import WalletError
from wallet_core.storage.database import get_database
from wallet_core.wallet.session import SessionState, WalletSession

app = typer.Typer(
    name="wallet-core",
    help="Self-custodial EVM wallet: PIN-encrypted seed, HD accounts, signed transfers.",
    no_args_is_help=True,
)
console = Console()

_selected_wallet: str = "default"


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        console.print(f"wallet-core {version('wallet-core')}")
        raise typer.Exit()


@app.callback()
def main(
    wallet: str = typer.Option(
        "default",
        "--wallet",
        "-W",
        help="Wallet slug to operate on",
        envvar="WALLET_CORE_NAME",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Self-custodial EVM wallet: PIN-encrypted seed, HD accounts, signed transfers."""
    global _selected_wallet
    _selected_wallet = wallet
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _run(coro):
    """Run an async function synchronously."""
    return asyncio.run(coro)


@asynccontextmanager
async def _open_session() -> AsyncIterator[WalletSession]:
    wallet_dir = get_wallet_dir(_selected_wallet)
    config = load_config(wallet_dir / "config.yaml")
    db = get_database(wallet_dir)
    await db.connect()
    session = WalletSession(db, config, owns_db=True)
    try:
        await session.resume()
        yield session
    finally:
        await session.close()


def _fail(exc: Exception) -> None:
    kind = f"{exc.kind.value}: " if isinstance(exc, WalletError) else ""
    console.print(f"[red]{kind}{exc}[/red]")
    raise typer.Exit(1)


def _ask_pin(confirm: bool = False) -> str:
    pin = console.input("[bold]PIN: [/bold]", password=True)
    if confirm:
        again = console.input("[bold]Confirm PIN: [/bold]", password=True)
        if pin != again:
            console.print("[red]PINs do not match.[/red]")
            raise typer.Exit(1)
    return pin


def _accounts_table(accounts) -> Table:
    table = Table(title="Accounts")
    table.add_column("Chain", style="cyan")
    table.add_column("Index", justify="right")
    table.add_column("Address")
    table.add_column("Path", style="dim")
    for a in accounts:
        table.add_row(a.chain, str(a.index), a.address, f"{a.path} ({a.strategy})")
    return table


def _chain_info(chain: str | None):
    config = load_config(get_wallet_dir(_selected_wallet, create=False) / "config.yaml")
    return resolve_chain(config, chain or config.default_chain)


def _save_default_config() -> None:
    path = get_wallet_dir(_selected_wallet) / "config.yaml"
    if not path.exists():
        config = load_config(path)
        config.name = _selected_wallet
        save_config(config, path)


# ------------------------------------------------------------------
# init / import
# ------------------------------------------------------------------


@app.command()
def init():
    """Generate a new seed phrase and encrypt it under a PIN."""
    pin = _ask_pin(confirm=True)

    async def _init():
        async with _open_session() as session:
            if await session.vault.has_seed():
                console.print("[yellow]Wallet already initialized.[/yellow] Use 'reset' first.")
                raise typer.Exit(1)
            return await session.initialize(pin=pin)

    try:
        result = _run(_init())
    except WalletError as e:
        _fail(e)
    _save_default_config()

    console.print(Panel(
        f"[bold]{result.seed_phrase}[/bold]\n\n"
        f"[dim]Write these words down in order and keep them offline.\n"
        f"They are the only way to recover this wallet.[/dim]",
        title="Recovery Seed Phrase",
    ))
    console.print(_accounts_table(result.accounts))


@app.command("import")
def import_wallet():
    """Import an existing BIP-39 seed phrase."""
    phrase = console.input("[bold]Seed phrase: [/bold]", password=True)
    pin = _ask_pin(confirm=True)

    async def _import():
        async with _open_session() as session:
            return await session.initialize(phrase, pin=pin)

    try:
        result = _run(_import())
    except WalletError as e:
        _fail(e)
    _save_default_config()
    console.print("[bold green]Wallet imported.[/bold green]")
    console.print(_accounts_table(result.accounts))


# ------------------------------------------------------------------
# accounts / balance / tokens
# ------------------------------------------------------------------


@app.command()
def accounts(
    index: int = typer.Option(None, "--index", "-i", help="Derive a different account index"),
):
    """Show derived accounts (optionally switch account index)."""

    async def _accounts():
        async with _open_session() as session:
            if index is not None or session.state is not SessionState.READY:
                if session.state is SessionState.UNINITIALIZED:
                    console.print("[yellow]No wallet found.[/yellow] Run 'wallet-core init' first.")
                    raise typer.Exit(1)
                return await session.derive_accounts(index or 0, pin=_ask_pin())
            return list(session.accounts.values())

    try:
        derived = _run(_accounts())
    except WalletError as e:
        _fail(e)
    console.print(_accounts_table(derived))


@app.command()
def balance(
    chain: str = typer.Option(None, "--chain", "-c", help="Chain name (sepolia, ethereum, base, ...)"),
    token: str = typer.Option(None, "--token", "-t", help="Token symbol or contract address"),
    all_chains: bool = typer.Option(False, "--all", "-a", help="Show the balance on every configured chain"),
):
    """Show the native (or token) balance of the current account."""

    async def _balance():
        async with _open_session() as session:
            if all_chains:
                return list((await session.fetch_balances()).values())
            if token:
                return await session.fetch_token_balance(token, chain)
            return await session.fetch_balance(chain)

    try:
        result = _run(_balance())
    except WalletError as e:
        _fail(e)

    for b in result if isinstance(result, list) else [result]:
        if b.error:
            console.print(f"[yellow]{b.chain}:[/yellow] {b.balance} {b.symbol} "
                          f"[dim](stale: {b.error})[/dim]")
        else:
            console.print(f"[bold]{b.chain}:[/bold] {b.balance} {b.symbol}")


@app.command()
def tokens(
    chain: str = typer.Option(None, "--chain", "-c", help="Chain name"),
):
    """List the native asset and configured ERC-20 tokens."""
    config = load_config(get_wallet_dir(_selected_wallet, create=False) / "config.yaml")
    try:
        ch = resolve_chain(config, chain or config.default_chain)
    except WalletError as e:
        _fail(e)

    table = Table(title=f"Tokens on {ch.name}")
    table.add_column("Symbol", style="cyan")
    table.add_column("Contract")
    table.add_column("Decimals", justify="right")
    table.add_row(ch.native_symbol, "[dim]native[/dim]", str(ch.decimals))
    for t in ch.tokens:
        table.add_row(t.symbol, t.address, str(t.decimals))
    console.print(table)


# ------------------------------------------------------------------
# send / history
# ------------------------------------------------------------------


@app.command()
def send(
    amount: str = typer.Argument(help="Amount to send (e.g. 0.01)"),
    to: str = typer.Option(..., "--to", help="Recipient address (0x...)"),
    chain: str = typer.Option(None, "--chain", "-c", help="Chain to send on"),
    token: str = typer.Option(None, "--token", "-t", help="Token symbol (default: native)"),
):
    """Sign and broadcast a transfer. Requires the PIN."""

    async def _prepare():
        async with _open_session() as session:
            return await session.prepare_transfer(to, amount, token, chain)

    try:
        tx = _run(_prepare())
    except WalletError as e:
        _fail(e)

    console.print(Panel(
        f"Amount:    [bold]{amount} {token or 'native'}[/bold]\n"
        f"To:        {to}\n"
        f"Nonce:     {tx.nonce}\n"
        f"Gas limit: {tx.gas_limit}\n"
        f"Gas price: {tx.gas_price} wei\n"
        f"Max fee:   {tx.max_fee} wei",
        title="Transfer",
    ))
    typer.confirm("Sign and send this transaction?", abort=True)
    pin = _ask_pin()

    async def _send():
        async with _open_session() as session:
            return await session.send_transfer(to, amount, token, chain, pin=pin)

    try:
        result = _run(_send())
    except WalletError as e:
        _fail(e)

    console.print(Panel(
        f"[bold green]Transaction sent![/bold green]\n\n"
        f"Tx:  [cyan]{result.hash}[/cyan]\n"
        f"Fee: {result.fee} wei (max)\n"
        f"Explorer: {_chain_info(chain).tx_url(result.hash)}",
        title="Transaction Sent",
    ))


@app.command()
def history(
    chain: str = typer.Option(None, "--chain", "-c", help="Chain name"),
    address: str = typer.Option(None, "--address", "-a", help="Address (default: current account)"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum transactions"),
):
    """Show recent transactions from the block explorer."""

    async def _history():
        async with _open_session() as session:
            return await session.get_history(address, limit, chain)

    try:
        entries = _run(_history())
    except WalletError as e:
        _fail(e)

    if not entries:
        console.print("[dim]No transactions found.[/dim]")
        return

    table = Table(title="Transactions")
    table.add_column("Hash", style="dim")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Value", justify="right")
    table.add_column("Status")
    colors = {"confirmed": "green", "failed": "red", "pending": "yellow"}
    for e in entries:
        color = colors.get(e.status, "white")
        table.add_row(
            e.hash[:12] + "...",
            e.from_address[:10] + "...",
            (e.to_address[:10] + "...") if e.to_address else "-",
            e.value,
            f"[{color}]{e.status}[/{color}]",
        )
    console.print(table)


# ------------------------------------------------------------------
# PIN management
# ------------------------------------------------------------------


@app.command("verify-pin")
def verify_pin():
    """Check whether a PIN unlocks the stored seed."""
    pin = _ask_pin()

    async def _verify():
        async with _open_session() as session:
            return await session.vault.verify_pin(pin)

    if _run(_verify()):
        console.print("[bold green]PIN is correct.[/bold green]")
    else:
        console.print("[red]PIN is incorrect (or no wallet exists).[/red]")
        raise typer.Exit(1)


@app.command("change-pin")
def change_pin():
    """Re-encrypt the seed under a new PIN."""
    console.print("[dim]Current PIN[/dim]")
    old = _ask_pin()
    console.print("[dim]New PIN[/dim]")
    new = _ask_pin(confirm=True)

    async def _change():
        async with _open_session() as session:
            await session.vault.change_pin(old, new)

    try:
        _run(_change())
    except WalletError as e:
        _fail(e)
    console.print("[bold green]PIN changed.[/bold green]")


@app.command()
def reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Erase the encrypted seed. Irreversible without the seed phrase."""
    if not yes:
        typer.confirm("This erases the wallet seed. Continue?", abort=True)

    async def _reset():
        async with _open_session() as session:
            await session.reset()

    _run(_reset())
    console.print("[bold]Wallet reset.[/bold]")


# ------------------------------------------------------------------
# contacts sub-commands
# ------------------------------------------------------------------

contacts_app = typer.Typer(
    name="contacts",
    help="Manage the address book.",
    no_args_is_help=True,
)
app.add_typer(contacts_app, name="contacts")


@contacts_app.command("add")
def contacts_add(
    name: str = typer.Argument(help="Contact name"),
    address: str = typer.Argument(help="Address (0x...)"),
    chain: str = typer.Option("sepolia", "--chain", "-c", help="Chain"),
    notes: str = typer.Option(None, "--notes", help="Free-text notes"),
):
    """Add a contact."""

    async def _add():
        async with _open_session() as session:
            return await session.contacts.add(name, address, chain, notes)

    try:
        record = _run(_add())
    except WalletError as e:
        _fail(e)
    console.print(f"Contact added (ID: {record.id}): {record.name}")


@contacts_app.command("list")
def contacts_list(
    search: str = typer.Option(None, "--search", "-s", help="Filter by name"),
):
    """List contacts."""

    async def _list():
        async with _open_session() as session:
            return await session.contacts.search(search or "")

    records = _run(_list())
    if not records:
        console.print("[dim]No contacts.[/dim]")
        return

    table = Table(title="Contacts")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Address")
    table.add_column("Chain")
    table.add_column("Notes", style="dim")
    for r in records:
        table.add_row(r.id, r.name, r.address, r.chain, (r.notes or "")[:40])
    console.print(table)


@contacts_app.command("remove")
def contacts_remove(
    contact_id: str = typer.Argument(help="Contact ID"),
):
    """Delete a contact."""

    async def _remove():
        async with _open_session() as session:
            return await session.contacts.delete(contact_id)

    if _run(_remove()):
        console.print(f"[bold]Contact {contact_id} removed.[/bold]")
    else:
        console.print(f"[red]Contact {contact_id} not found.[/red]")
        raise typer.Exit(1)


# ------------------------------------------------------------------
# serve
# ------------------------------------------------------------------


@app.command()
def serve(
    port: int = typer.Option(None, "--port", "-p", help="Port to serve on"),
    host: str = typer.Option(None, "--host", help="Host to bind to"),
):
    """Launch the HTTP API."""
    from wallet_core.api.server import run_server

    config = load_config(get_wallet_dir(_selected_wallet) / "config.yaml")
    host = host or config.api.host
    port = port or config.api.port
    console.print(f"[bold green]Starting wallet API at http://{host}:{port}[/bold green]")
    run_server(host=host, port=port, wallet=_selected_wallet)


if __name__ == "__main__":
    app()
