"""One fork risk calculation run: connect, scan, aggregate, validate, publish."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from .aggregator import aggregate_dispute_states, select_active_disputes
from .cache import EventCacheStore
from .config import ContractsDocument, RunSettings, load_contracts
from .endpoints import RpcConnection, select_endpoint
from .errors import (
    AllEndpointsUnavailableError,
    LedgerUnavailableError,
    ResultWriteError,
    RpcError,
)
from .fetcher import ChunkedEventFetcher, plan_scan
from .health import validate_cache_health
from .ledger import AugurLedger, Ledger
from .retry import retry_with_backoff
from .risk import (
    ConnectionInfo,
    ForkRiskResult,
    apply_last_risk_change,
    build_error_result,
    build_forking_result,
    build_risk_result,
    read_previous_result,
    write_result,
)
from .rpc import JsonRpcClient

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_WRITE_FAILED = 2


@dataclass
class ForkingCheck:
    is_forking: bool
    error: Optional[str] = None


class ForkRiskRunner:
    """Runs the calculation against the first endpoint that can complete it."""

    def __init__(
        self,
        settings: RunSettings,
        contracts: Optional[ContractsDocument] = None,
        *,
        connect: Optional[Callable[[str], Any]] = None,
        ledger_factory: Optional[Callable[[Any], Ledger]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.config = settings.config
        self.contracts = contracts
        self.sleep = sleep
        self.connect = connect or self._default_connect
        self.ledger_factory = ledger_factory or self._default_ledger
        self.store = EventCacheStore(settings.cache_path, self.config)

    def _default_connect(self, url: str) -> JsonRpcClient:
        return JsonRpcClient(url, timeout=self.settings.rpc_timeout_seconds)

    def _default_ledger(self, client: Any) -> Ledger:
        if self.contracts is None:
            self.contracts = load_contracts(self.settings.contracts_path)
        return AugurLedger(client, self.contracts)

    def calculate(self) -> ForkRiskResult:
        """Calculate with endpoint fallback.

        If the run fails with a ledger error on the selected endpoint, selection
        resumes at the next endpoint; failures accumulate in the fallback count.
        """
        endpoints = self.settings.rpc_endpoints
        start_index = 0
        failures = 0
        last_error: Optional[Exception] = None

        while start_index < len(endpoints):
            connection = select_endpoint(
                endpoints,
                connect=self.connect,
                timeout=self.settings.rpc_timeout_seconds,
                start_index=start_index,
                prior_failures=failures,
            )
            try:
                ledger = self.ledger_factory(connection.client)
                return self._calculate_with(ledger, connection)
            except (RpcError, LedgerUnavailableError) as exc:
                last_error = exc
                logger.warning(f"Operation failed with {connection.endpoint}: {exc}")
                failures = connection.fallbacks_attempted + 1
                start_index = connection.index + 1
            finally:
                close = getattr(connection.client, "close", None)
                if callable(close):
                    close()

        raise AllEndpointsUnavailableError(failures, str(last_error) if last_error else None)

    def _check_forking(self, ledger: Ledger) -> ForkingCheck:
        try:
            forking = retry_with_backoff(
                ledger.is_forking,
                max_attempts=self.config.forking_check_attempts,
                base_seconds=self.config.backoff_base_seconds,
                max_seconds=self.config.backoff_max_seconds,
                sleep=self.sleep,
                label="universe.isForking()",
            )
        except Exception as exc:
            logger.warning("Failed to check forking status, continuing with dispute calculation")
            return ForkingCheck(is_forking=False, error=str(exc))
        return ForkingCheck(is_forking=bool(forking))

    def _calculate_with(self, ledger: Ledger, connection: RpcConnection) -> ForkRiskResult:
        cfg = self.config
        info = ConnectionInfo.from_connection(connection)

        height = ledger.get_current_height()
        logger.info(f"Block Number: {height}")

        forking = self._check_forking(ledger)
        if forking.is_forking:
            logger.warning("UNIVERSE IS FORKING! Setting maximum risk level")
            return build_forking_result(block_number=height, connection=info, config=cfg)

        cache = self.store.load()
        plan = plan_scan(cache.last_queried_block, height, cfg, self.settings.mode)
        if plan.incremental:
            logger.info(
                f"Incremental query: blocks {plan.from_block} -> {plan.to_block} "
                f"(~{plan.block_count} blocks, {cache.total_events} cached events)"
            )
        else:
            logger.info(f"Full query: blocks {plan.from_block} -> {plan.to_block}")

        fetcher = ChunkedEventFetcher(ledger, cfg, sleep=self.sleep)
        fetched = fetcher.fetch(plan.from_block, plan.to_block)

        # Only an incremental merge keeps cached events when every chunk failed.
        if fetched.unusable and (
            forking.error is not None or not plan.incremental or not cache.has_data
        ):
            if forking.error is not None:
                reason = forking.error
            elif not cache.has_data:
                reason = "no cached events to fall back on"
            else:
                reason = "full scan cannot reuse cached events"
            raise LedgerUnavailableError(
                f"dispute scan failed for all {fetched.total_chunks} chunks ({reason})"
            )

        health = validate_cache_health(ledger, cache, height, cfg)

        merged = self.store.merge(cache, fetched, plan)
        pruned, _ = self.store.prune(merged, height)
        self.store.save(pruned)

        if plan.incremental:
            saved = cfg.lookback_blocks // cfg.chunk_size - plan.block_count // cfg.chunk_size
            logger.info(
                f"RPC queries saved: ~{max(0, saved)} chunks "
                f"(queried {plan.block_count} blocks instead of {cfg.lookback_blocks})"
            )

        states = aggregate_dispute_states(pruned.all_events())
        active = select_active_disputes(states, ledger.is_market_finalized, cfg)

        result = build_risk_result(
            active,
            block_number=height,
            connection=info,
            cache_validation=health,
            config=cfg,
        )
        result.extra["scan"] = {
            "mode": "incremental" if plan.incremental else "full",
            "fromBlock": plan.from_block,
            "toBlock": plan.to_block,
            "chunks": fetched.total_chunks,
            "successfulChunks": fetched.successful_chunks,
            "syncStatus": fetched.sync_status,
            "eventsTracked": pruned.total_events,
        }
        return result


def publish(settings: RunSettings, result: ForkRiskResult) -> None:
    """Stamp ``lastRiskChange`` from the previous document and write the result."""
    previous = read_previous_result(settings.output_path)
    apply_last_risk_change(result, previous)
    write_result(settings.output_path, result)


def run_fork_risk(
    settings: RunSettings,
    runner: Optional[ForkRiskRunner] = None,
) -> Tuple[int, ForkRiskResult]:
    """Run once and publish. Returns ``(exit_code, result)``.

    A failed calculation publishes an ``unknown`` error document and returns
    ``EXIT_RUN_FAILED``; ``EXIT_WRITE_FAILED`` means nothing could be published.
    """
    exit_code = EXIT_OK
    try:
        active_runner = runner or ForkRiskRunner(settings)
        result = active_runner.calculate()
    except Exception as exc:  # noqa: BLE001
        logger.error(f"Fatal error during fork risk calculation: {exc}")
        result = build_error_result(str(exc), config=settings.config)
        exit_code = EXIT_RUN_FAILED

    try:
        publish(settings, result)
    except ResultWriteError as exc:
        logger.error(f"Failed to save result: {exc}")
        return EXIT_WRITE_FAILED, result

    if exit_code == EXIT_OK:
        logger.info(f"Fork risk calculation completed using {result.connection.endpoint}")
    else:
        logger.info("Error state saved to result document")
    return exit_code, result
