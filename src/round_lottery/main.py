"""
Round Lottery Application

Main entry point: wires the clock source, funds ledger, lottery engine,
passive operator and FastAPI web server, and runs until signalled.
"""

import asyncio
import signal
import sys
import traceback
from pathlib import Path

from dotenv import load_dotenv

from round_lottery.blockchain.chain import LocalChain
from round_lottery.blockchain.client import Web3ChainClient
from round_lottery.blockchain.funds import FundsLedger
from round_lottery.lottery.engine import LotteryEngine
from round_lottery.lottery.operator import PassiveOperator
from round_lottery.utils.config import build_lottery_config, load_config, load_genesis
from round_lottery.utils.logger import configure_logging, get_logger
from round_lottery.web_server import LotteryWebServer

logger = get_logger(__name__)


class LotteryApp:
    """Round lottery application.

    Responsible for initializing and orchestrating the clock source, the
    engine, the passive operator and the web server. Handles graceful
    shutdown and logs a startup summary for diagnostics.
    """

    def __init__(self, config=None):
        self.config = config if config is not None else load_config()
        configure_logging(self.config)
        self.lottery_config = build_lottery_config(self.config)
        self.chain_client = None
        self.engine = None
        self.operator = None
        self.web_server = None
        self.running = True

    def _display_config_summary(self):
        """Display key configuration options for diagnostics."""
        cfg = self.lottery_config
        logger.info("=" * 60)
        logger.info("📋 CONFIGURATION SUMMARY")
        logger.info("=" * 60)
        logger.info(f"👤 Admin: {cfg.admin}")
        logger.info(f"📄 Collection account: {cfg.contract_address}")
        logger.info(f"🎟️  Ticket price: {cfg.ticket_price} wei")
        logger.info(f"⏱️  Round duration: {cfg.round_duration}s")
        logger.info(f"💸 Fee: {cfg.fee_bps} bps")
        logger.info(f"🔒 Per-address cap: {cfg.per_address_cap}")
        logger.info(f"🔗 RPC URL: {self.config.get('chain', {}).get('rpc_url', 'local chain')}")
        logger.info("=" * 60)

    async def initialize(self):
        """Build the clock source, engine, operator and web server."""
        logger.info("🚀 Initializing Round Lottery Application")
        self._display_config_summary()

        if self.config.get("chain", {}).get("rpc_url"):
            logger.info("🔗 Using RPC-backed clock and beacon")
            self.chain_client = Web3ChainClient(self.config)
            await self.chain_client.initialize()
            clock = self.chain_client
        else:
            logger.info("🔗 Using local chain following the wall clock")
            clock = LocalChain(follow_wall_clock=True)

        funds = FundsLedger(load_genesis(self.config))
        self.engine = LotteryEngine(self.lottery_config, clock, funds)
        self.operator = PassiveOperator(self.engine, self.config)
        self.web_server = LotteryWebServer(self.config, self.engine, self.operator)
        logger.info("🎉 Application initialization completed")

    async def start(self):
        """Start services and run until a shutdown signal is received."""
        try:
            await self.initialize()
            await self.operator.start()

            server_host = self.config.get('server', {}).get('host', '0.0.0.0')
            server_port = int(self.config.get('server', {}).get('port', 6080))
            logger.info(f"🌍 Starting web server on {server_host}:{server_port}...")
            server_task = asyncio.create_task(self.web_server.start(host=server_host, port=server_port))
            await asyncio.sleep(0.2)
            if server_task.done() and server_task.exception():
                raise server_task.exception()

            logger.info(f"🔧 API Endpoints: http://{server_host}:{server_port}/api/")
            while self.running and not server_task.done():
                await asyncio.sleep(1)

            logger.info("🛑 Shutdown signal received, stopping application...")
        finally:
            await self.stop()

    async def stop(self):
        logger.info("🛑 Stopping Round Lottery Application...")

        if self.operator:
            try:
                await self.operator.stop()
                logger.info("✅ Passive operator stopped")
            except Exception as e:
                logger.error(f"❌ Error stopping operator: {e}")

        if self.web_server:
            try:
                await self.web_server.stop()
                logger.info("✅ Web server stopped")
            except Exception as e:
                logger.error(f"❌ Error stopping web server: {e}")

        if self.chain_client:
            self.chain_client.close()
            logger.info("✅ Chain client closed")

    def _handle_signal(self, signum, frame):
        logger.info(f"📡 Received signal {signum}, initiating graceful shutdown...")
        self.running = False


async def main():
    """Main entry point for the Round Lottery Application"""
    load_dotenv(Path.cwd() / '.env')
    app = LotteryApp()

    signal.signal(signal.SIGINT, app._handle_signal)
    signal.signal(signal.SIGTERM, app._handle_signal)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("🛑 Application interrupted by user")
    except Exception as e:
        logger.error(f"❌ Application failed: {e}")
        logger.error(f"🔍 Error details: {traceback.format_exc()}")
        sys.exit(1)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
