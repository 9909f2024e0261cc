"""
Fulfiller CLI.

Commands:
  fulfiller run           — Start the service (scan + fulfill every interval, forever)
  fulfiller addresses     — Show service and attestor addresses
  fulfiller attest 1 2 3  — Run the configured attestor on the given input
  fulfiller demo          — One full cycle against an in-memory ledger (no network)
"""

import logging
import os
import sys

from fulfiller.errors import AttestationError, FatalStartupError

LOG_FORMAT = "ts=%(asctime)s level=%(levelname)s logger=%(name)s msg=%(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _load_config():
    from fulfiller.config import FulfillerConfig

    return FulfillerConfig.from_env()


def run_command() -> None:
    from fulfiller.service import FulfillerService

    config = _load_config()
    configure_logging(config.log_level)
    service = FulfillerService.from_config(config)
    service.run()


def addresses_command() -> None:
    from fulfiller.service import FulfillerService

    service = FulfillerService.from_config(_load_config())
    try:
        print(f"Service address:  {service.signer.identity}")
        print(f"Attestor address: {service.attestor.identity}")
        public_key = getattr(service.attestor, "public_key", None)
        if public_key is not None:
            print(f"Attestor public key: 0x{public_key.hex()}")
    finally:
        service.close()


def attest_command(args) -> None:
    from fulfiller.service import FulfillerService

    if not args:
        print("Usage: fulfiller attest <int> [<int> ...]")
        sys.exit(1)
    try:
        input_data = [int(a) for a in args]
    except ValueError:
        print(f"Input must be integers, got: {' '.join(args)}", file=sys.stderr)
        sys.exit(1)
    service = FulfillerService.from_config(_load_config())
    try:
        attestation = service.attestor.compute(input_data)
    except AttestationError as e:
        print(f"Attestation failed: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        service.close()
    print(f"Proof:     {attestation.proof.decode('utf-8', errors='replace')}")
    print(f"Proof hex: 0x{attestation.proof.hex()}")
    print(f"Signature: 0x{attestation.signature.hex()}")


def demo_command(args) -> None:
    """Seed a pending job, run one tick, show it is no longer pending."""
    from fulfiller.attestor import MockEnclaveAttestor, verify_attestation
    from fulfiller.config import FulfillerConfig
    from fulfiller.local_ledger import DEMO_PACKAGE_ID, InMemoryLedger
    from fulfiller.schema import Attestation, JobState
    from fulfiller.service import FulfillerService
    from fulfiller.wallet import Signer

    configure_logging(os.getenv("FULFILLER_LOG_LEVEL", "INFO"))
    input_data = [int(a) for a in args] if args else [10, 20, 30]
    service_signer, attestor_signer = Signer.generate(), Signer.generate()
    ledger = InMemoryLedger(DEMO_PACKAGE_ID)
    cap_id = ledger.create_trusted_signer(service_signer.identity, attestor_signer.public_key)
    vault_id = ledger.create_payment_source(service_signer.identity, balance=1_000)
    job_id = ledger.create_job(service_signer.identity, input_data, price=100, requester="0xdemo")

    config = FulfillerConfig(package_id=DEMO_PACKAGE_ID, trusted_signer_id=cap_id, payment_source_id=vault_id)
    attestor = MockEnclaveAttestor(attestor_signer, label=config.proof_label)
    service = FulfillerService(config, service_signer, attestor, ledger=ledger)

    print(f"Service address:  {service_signer.identity}")
    print(f"Attestor address: {attestor_signer.identity}")
    print(f"Pending job {job_id} with input {input_data}\n")

    report = service.scheduler.run_tick()
    for outcome in report.outcomes:
        print(f"Job {outcome.job_id}: {outcome.state.value} tx={outcome.transaction_id} error={outcome.error}")

    fields = ledger.get_object_fields(job_id)
    stored = Attestation(proof=bytes(fields["proof"]), signature=bytes(fields["signature"]))
    if stored.proof:
        print(f"\nProof on ledger: {stored.proof.decode('utf-8')}")
        print(f"Signature verifies: {verify_attestation(stored, input_data, attestor_signer.public_key, config.proof_label)}")
    remaining = service.scheduler.scanner.scan(service_signer.identity, config.job_type)
    print(f"Pending after tick: {len(remaining)}")
    print(f"Requester balance: {ledger.balances.get('0xdemo', 0)}")
    if not report.outcomes or report.outcomes[0].state != JobState.CONFIRMED:
        sys.exit(1)


def main():
    """CLI entry point."""
    if len(sys.argv) < 2:
        print("Fulfiller CLI")
        print("\nCommands:")
        print("  fulfiller run           — Start the service")
        print("  fulfiller addresses     — Show service and attestor addresses")
        print("  fulfiller attest <ints> — Run the attestor locally")
        print("  fulfiller demo [ints]   — One cycle against an in-memory ledger")
        sys.exit(1)

    command, args = sys.argv[1], sys.argv[2:]
    try:
        if command == "run":
            run_command()
        elif command == "addresses":
            addresses_command()
        elif command == "attest":
            attest_command(args)
        elif command == "demo":
            demo_command(args)
        else:
            print(f"Unknown command: {command}")
            print("Use 'fulfiller run', 'fulfiller addresses', 'fulfiller attest <ints>' or 'fulfiller demo'")
            sys.exit(1)
    except FatalStartupError as e:
        print(f"Fatal: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
