"""
Wire config, keys, ledger, attestor, scanner, pipeline and scheduler together.
"""

import logging
import signal
import threading
from typing import Optional

from fulfiller.attestor import Attestor, get_attestor
from fulfiller.config import FulfillerConfig
from fulfiller.ledger import LedgerClient, SuiLedgerClient
from fulfiller.pipeline import FulfillmentPipeline, RecentSubmissions
from fulfiller.scanner import JobScanner
from fulfiller.scheduler import Scheduler
from fulfiller.wallet import ENV_SERVICE_KEY, Signer, load_service_signers, load_signer

logger = logging.getLogger(__name__)


class FulfillerService:
    """
    One long-running fulfillment service. Holds no job state; safe to
    restart at any point.
    """

    def __init__(
        self,
        config: FulfillerConfig,
        service_signer: Signer,
        attestor: Attestor,
        ledger: Optional[LedgerClient] = None,
    ):
        self.config = config
        self.signer = service_signer
        self.attestor = attestor
        self.ledger = ledger or SuiLedgerClient(config.rpc_url, gas_budget=config.gas_budget, timeout=config.rpc_timeout)
        self.pipeline = FulfillmentPipeline(
            self.ledger,
            attestor,
            service_signer,
            entry_point=config.entry_point,
            trusted_signer_id=config.trusted_signer_id,
            payment_source_id=config.payment_source_id,
            recent=RecentSubmissions(config.dedup_window),
        )
        self.health_server = None
        self.scheduler = Scheduler(
            JobScanner(self.ledger),
            self.pipeline,
            owner=service_signer.identity,
            type_filter=config.job_type,
            interval=config.poll_interval,
        )

    @classmethod
    def from_config(cls, config: FulfillerConfig, ledger: Optional[LedgerClient] = None) -> "FulfillerService":
        """Load keys (FatalStartupError on any problem) and build the service."""
        if config.attestor_url:
            # Remote enclave holds its own key; only the submitting identity is local.
            service = load_signer(config.service_key_index, ENV_SERVICE_KEY, config.keystore_path)
            attestor = get_attestor(config, service)
        else:
            service, attestor_signer = load_service_signers(
                config.keystore_path, config.service_key_index, config.attestor_key_index
            )
            attestor = get_attestor(config, attestor_signer)
        return cls(config, service, attestor, ledger=ledger)

    def run(self, max_ticks: Optional[int] = None) -> None:
        logger.info("service address=%s", self.signer.identity)
        logger.info("attestor address=%s", self.attestor.identity)
        logger.info("watching type=%s", self.config.job_type)
        health_check = getattr(self.attestor, "health_check", None)
        if callable(health_check) and not health_check():
            logger.warning("attestor enclave is not healthy; jobs will fail attestation until it is")
        if self.config.health_port:
            from fulfiller.health import create_app, serve_in_background

            app = create_app(self.scheduler, self.signer.identity, self.attestor.identity)
            self.health_server, _ = serve_in_background(app, self.config.health_port)
        self._install_signal_handlers()
        try:
            self.scheduler.run(max_ticks=max_ticks)
        finally:
            self.close()

    def stop(self, *_args) -> None:
        logger.info("shutdown requested; finishing in-flight tick")
        self.scheduler.stop()

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, self.stop)

    def close(self) -> None:
        if self.health_server is not None:
            self.health_server.should_exit = True
            self.health_server = None
        for resource in (self.ledger, self.attestor):
            close = getattr(resource, "close", None)
            if callable(close):
                close()
