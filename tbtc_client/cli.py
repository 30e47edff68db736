"""
CLI for the tBTC client.
"""

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

from .bitcoin import EsploraBitcoinClient
from .config import TBTCConfig
from .errors import ProofError, TBTCError
from .evm import EthereumClient
from .factory import DepositFactory
from .log import configure_logging
from .models import DepositState

app = typer.Typer(
    name="tbtc-client",
    help="tBTC deposit lifecycle client",
    add_completion=False,
)

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to .env configuration file",
)


def main() -> None:
    """Entry point."""
    load_dotenv()
    app()


@app.callback()
def setup(
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Log level"),
) -> None:
    configure_logging(log_level)


def _bitcoin_client(config: TBTCConfig) -> EsploraBitcoinClient:
    poll_interval = config.settings.bitcoin_poll_interval_seconds
    profile = config.bitcoin_server_profile()
    if profile is not None:
        return EsploraBitcoinClient.from_profile(profile, poll_interval=poll_interval)
    return EsploraBitcoinClient(config.settings.bitcoin_api_url, poll_interval=poll_interval)


def _run(config_path: Optional[Path], action) -> None:
    """Build a factory from configuration and run ``action(factory)`` on it."""

    async def _main() -> None:
        config = TBTCConfig.from_env(config_path)
        chain = EthereumClient(
            rpc_url=config.settings.rpc_url,
            private_key=config.settings.private_key,
            event_poll_interval=config.settings.event_poll_interval_seconds,
        )
        bitcoin = _bitcoin_client(config)
        try:
            factory = await DepositFactory.with_config(config, chain, bitcoin)
            await action(factory)
        finally:
            await bitcoin.close()

    try:
        asyncio.run(_main())
    except TBTCError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command("lot-sizes")
def lot_sizes(config_path: Optional[Path] = ConfigOption) -> None:
    """
    List the lot sizes deposits can currently be opened with.
    """

    async def _list(factory: DepositFactory) -> None:
        for size in await factory.available_satoshi_lot_sizes():
            typer.echo(f"{size} sats ({size / 1e8:.8f} BTC)")

    _run(config_path, _list)


@app.command()
def deposit(
    lot_size: int = typer.Argument(..., help="Lot size in satoshis"),
    mint: bool = typer.Option(False, "--mint", help="Mint TBTC once the deposit is active"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Open a deposit, wait for it to be funded and qualified, optionally mint.
    """

    async def _deposit(factory: DepositFactory) -> None:
        opened = await factory.with_satoshi_lot_size(lot_size)
        typer.echo(f"Deposit: {opened.address}")

        pipeline = opened.auto_submit()
        address = await opened.bitcoin_address()
        typer.echo(f"Fund with exactly {lot_size} satoshis to: {address}")
        typer.echo("Waiting for funding transaction...")

        transaction = await asyncio.shield(pipeline.funding_transaction)
        typer.echo(f"Found funding transaction {transaction.transaction_id}")

        confirmed = await asyncio.shield(pipeline.funding_confirmations)
        typer.echo(f"Funding transaction has {confirmed.required_confirmations} confirmations")

        await pipeline.wait()
        await opened.wait_until_active()
        typer.echo("Deposit is active")

        if mint:
            minted = await opened.mint_tbtc()
            typer.echo(f"Minted {minted / 1e18} TBTC")

    _run(config_path, _deposit)


@app.command()
def show(
    deposit_address: str = typer.Argument(..., help="Deposit contract address"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Show a deposit's state, owner, funding address and redemption.
    """

    async def _show(factory: DepositFactory) -> None:
        found = await factory.with_address(deposit_address)
        state = await found.get_current_state()

        typer.echo(f"Deposit: {found.address}")
        typer.echo(f"  State: {state.name}")
        typer.echo(f"  Lot size: {await found.get_satoshi_lot_size()} sats")
        typer.echo(f"  Owner: {await found.get_owner()}")
        typer.echo(f"  In vending machine: {await found.in_vending_machine()}")

        # Failed setup never registers a signer key
        if state >= DepositState.AWAITING_BTC_FUNDING_PROOF and state != DepositState.FAILED_SETUP:
            typer.echo(f"  Bitcoin address: {await found.bitcoin_address()}")

        redemption = await found.get_current_redemption()
        if redemption is not None:
            typer.echo("  Redemption:")
            typer.echo(json.dumps(redemption.details.to_dict(), indent=2))

    _run(config_path, _show)


@app.command()
def redeem(
    deposit_address: str = typer.Argument(..., help="Deposit contract address"),
    redeemer_address: str = typer.Argument(..., help="Bitcoin address to receive the BTC"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Request redemption of a deposit to a Bitcoin address.
    """

    async def _redeem(factory: DepositFactory) -> None:
        found = await factory.with_address(deposit_address)
        cost = await found.get_redemption_cost()
        typer.echo(f"Redemption cost: {cost / 1e18} TBTC")

        details = await found.request_redemption(redeemer_address)
        typer.echo("Redemption requested:")
        typer.echo(json.dumps(details.to_dict(), indent=2))

    _run(config_path, _redeem)


@app.command()
def proof(
    deposit_address: str = typer.Argument(..., help="Deposit contract address"),
    hex_output: bool = typer.Option(False, "--hex", help="Output ABI-encoded hex for contract"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Build the funding proof for a deposit without submitting it.
    """

    async def _proof(factory: DepositFactory) -> None:
        found = await factory.with_address(deposit_address)
        address = await found.bitcoin_address()
        lot_size = await found.get_satoshi_lot_size()

        transaction = await found.bitcoin.find_transaction(address, lot_size)
        if transaction is None:
            raise ProofError(f"Funding transaction not found for deposit {found.address}.")

        confirmations = await found.get_required_confirmations()
        funding_proof = await found.construct_funding_proof(transaction, confirmations)

        if hex_output:
            typer.echo(f"0x{funding_proof.encode().hex()}")
        else:
            typer.echo(json.dumps(funding_proof.to_dict(), indent=2))

    _run(config_path, _proof)


@app.command()
def version() -> None:
    """Show the client version."""
    from tbtc_client import __version__
    typer.echo(f"tbtc-client v{__version__}")


if __name__ == "__main__":
    main()
