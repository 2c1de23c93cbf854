### Tier-2 escalation: walks the provider chain for records the gazetteer and zip centroid could not place.

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from typing import Iterable, Mapping, Self, Sequence
import structlog

from prescriber_geo.errors import DailyCapExceeded, ProviderAuthError, ProviderError
from prescriber_geo.geography import CountyLocator, state_abbr_for_fips
from prescriber_geo.providers.base import Provider
from prescriber_geo.records import (
    GeocodeQuery,
    GeocodeResponse,
    PrescriberRecord,
    RecordKey,
    ResolutionResult,
    ResolutionTier,
)
from prescriber_geo.store import ResultStore

logger = structlog.get_logger()


class EscalationController:
    """
    Resolves leftover records against external geocoders in fixed priority order.

    Each provider is a stage. Every pending record gets its answer from a
    provider (match, wrong state, nothing, or an error) before the next
    provider is consulted, and the first provider whose top candidate lands in
    a county of the claimed state wins. Calls within a stage run on a bounded
    thread pool that shares the provider's rate limiter.

    Parameters
    ----------
    providers : Sequence[Provider], the chain; sorted by ``config.priority``.
    locator : CountyLocator, turns returned coordinates into county FIPS.
    store : ResultStore, optional. Results are written as each call settles, and
        records already settled in the store are skipped on the next run.
    """

    def __init__(
        self: Self,
        providers: Sequence[Provider],
        locator: CountyLocator,
        store: ResultStore | None = None,
    ) -> None:
        self.providers = sorted(providers, key=lambda p: p.config.priority)
        self.locator = locator
        self.store = store

    @property
    def chain(self: Self) -> tuple[str, ...]:
        return tuple(p.name for p in self.providers)

    def tried_all(self: Self, result: ResolutionResult) -> bool:
        """Whether every provider in the current chain has answered for this record."""
        return set(self.chain) <= set(result.attempted)

    def escalate(
        self: Self,
        records: Iterable[PrescriberRecord],
        results: Mapping[RecordKey, ResolutionResult] | None = None,
    ) -> dict[RecordKey, ResolutionResult]:
        """
        Run the provider cascade.

        Parameters
        ----------
        records : Iterable[PrescriberRecord], records to consider.
        results : Mapping, tier-1 results. Records already resolved there pass
            through untouched; records missing from it start as UNRESOLVED.

        Returns
        -------
        dict[RecordKey, ResolutionResult] for every input record.
        """
        results = results or {}
        final: dict[RecordKey, ResolutionResult] = {}
        pending: dict[RecordKey, tuple[PrescriberRecord, ResolutionResult]] = {}

        for record in records:
            result = results.get(record.key) or ResolutionResult.unresolved(record)
            if not result.resolved and self.store is not None:
                result = self.store.get(record.key) or result
            # A stored exhausted flag reflects an older chain; only attempts count
            if result.resolved:
                final[record.key] = result
            elif self.tried_all(result):
                final[record.key] = replace(result, exhausted=True)
            else:
                pending[record.key] = (record, result)

        logger.info("escalation_started", pending=len(pending), skipped=len(final), chain=self.chain)

        for provider in self.providers:
            if not pending:
                break
            if provider.disabled:
                logger.info("provider_skipped", provider=provider.name, reason=provider.disabled_reason)
                continue
            self._run_stage(provider, pending, final)

        flagged: list[ResolutionResult] = []
        for key, (record, result) in pending.items():
            exhausted = self.tried_all(result)
            if exhausted != result.exhausted:
                result = replace(result, exhausted=exhausted)
                flagged.append(result)
            final[key] = result
        if self.store is not None:
            self.store.put_many(flagged)

        logger.info(
            "escalation_finished",
            resolved=sum(1 for r in final.values() if r.tier == ResolutionTier.EXTERNAL_GEOCODE),
            unresolved=len(pending),
        )
        return final

    def _run_stage(
        self: Self,
        provider: Provider,
        pending: dict[RecordKey, tuple[PrescriberRecord, ResolutionResult]],
        final: dict[RecordKey, ResolutionResult],
    ) -> None:
        todo = [record for record, result in pending.values() if provider.name not in result.attempted]
        if not todo:
            return

        queries = [provider.query_for(record) for record in todo]
        size = provider.config.batch_size if provider.supports_batch else 1
        chunks = [queries[i:i + size] for i in range(0, len(queries), size)]
        accepted = 0

        logger.info("provider_stage_started", provider=provider.name, records=len(todo), requests=len(chunks))
        with ThreadPoolExecutor(max_workers=provider.config.workers) as pool:
            futures = [pool.submit(self._call, provider, chunk) for chunk in chunks]
            for future in as_completed(futures):
                responses = future.result()
                settled = self._settle(provider, responses, pending)
                for result in settled:
                    if result.resolved:
                        final[result.key] = result
                        del pending[result.key]
                        accepted += 1
                    else:
                        pending[result.key] = (pending[result.key][0], result)
                if self.store is not None:
                    self.store.put_many(settled)

        logger.info("provider_stage_finished", provider=provider.name, accepted=accepted, remaining=len(pending))

    def _call(self: Self, provider: Provider, chunk: list[GeocodeQuery]) -> list[GeocodeResponse]:
        """
        Query one chunk. Errors for the chunk count as "no candidate"; auth
        failures and spent quotas disable the provider and leave the chunk
        unanswered so a later run retries it.

        A batch larger than the quota left is cut down to what remains; the
        records past the cut stay unanswered.
        """
        if provider.disabled:
            return []
        try:
            if len(chunk) == 1:
                candidates = [provider.geocode(chunk[0], limit=1)]
            else:
                candidates = provider.geocode_batch(chunk)
        except DailyCapExceeded as e:
            remaining = provider.limiter.remaining or 0
            if 0 < remaining < len(chunk):
                return self._call(provider, chunk[:remaining])
            provider.disable(str(e))
            return []
        except ProviderAuthError as e:
            provider.disable(str(e))
            return []
        except ProviderError as e:
            logger.warning("provider_call_failed", provider=provider.name, records=len(chunk), error=str(e))
            return [GeocodeResponse(provider.name, q.key, error=str(e)) for q in chunk]
        return [GeocodeResponse(provider.name, q.key, c) for q, c in zip(chunk, candidates)]

    def _settle(
        self: Self,
        provider: Provider,
        responses: list[GeocodeResponse],
        pending: dict[RecordKey, tuple[PrescriberRecord, ResolutionResult]],
    ) -> list[ResolutionResult]:
        located = self.locator.locate_many([response.top for response in responses])
        settled: list[ResolutionResult] = []
        for response, fips in zip(responses, located):
            record, result = pending[response.key]
            result = replace(result, attempted=result.attempted + (provider.name,), exhausted=False)
            if fips is not None and state_abbr_for_fips(fips) == record.state:
                result = result.accept(fips, ResolutionTier.EXTERNAL_GEOCODE, provider.name)
            elif fips is not None:
                result = replace(result, state_mismatch=True)
            settled.append(result)
        return settled


def escalate(
    records: Iterable[PrescriberRecord],
    providers: Sequence[Provider],
    locator: CountyLocator,
    results: Mapping[RecordKey, ResolutionResult] | None = None,
    store: ResultStore | None = None,
) -> dict[RecordKey, ResolutionResult]:
    return EscalationController(providers, locator, store).escalate(records, results)
