"""Sale service — facade that wraps Crowdsale operations with audit events.

Every operation returns a ServiceResult instead of raising. Sale errors
(all ValueError subclasses) become failed results and leave the sale
untouched. TokenTransferError is not a ValueError; it propagates, since a
token ledger failure is a collaborator fault rather than a refusal. The
sale is left as it was before the call.

After an operation succeeds its audit events are appended to the event log
(if one was provided). The sale state is already committed at that point.
If the log cannot be written the result still succeeds, carries a warning
under data["warnings"], and the service flags audit_degraded.
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from tokensale.crowdsale import Crowdsale
from tokensale.persistence.event_log import EventKind, EventLog, EventRecord


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


def to_jsonable(value: Any) -> Any:
    """Convert dataclasses, enums and datetimes into JSON-ready values."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


class CrowdsaleService:
    """Audited facade over a Crowdsale.

    Usage:
        sale = Crowdsale(ParamsResolver.from_config_dir(config_dir).sale_config())
        service = CrowdsaleService(sale, event_log=EventLog(Path("sale.jsonl")))

        result = service.contribute("alice", 5, now=during_sale)
        if not result.success:
            print(result.errors)
        service.verify_kyc("sale_admin", "alice")
        service.finalize("sale_admin", now=after_end)
    """

    def __init__(self, sale: Crowdsale, event_log: Optional[EventLog] = None) -> None:
        self._sale = sale
        self._event_log = event_log
        # Initialize counter from persisted log to avoid ID collision on restart
        self._event_counter = event_log.count if event_log is not None else 0
        self._audit_degraded = False

    @property
    def sale(self) -> Crowdsale:
        return self._sale

    @property
    def event_log(self) -> Optional[EventLog]:
        return self._event_log

    @property
    def audit_degraded(self) -> bool:
        return self._audit_degraded

    # ------------------------------------------------------------------
    # Contributions and KYC
    # ------------------------------------------------------------------

    def contribute(
        self, participant: str, value: int, now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            receipt = self._sale.contribute(participant, value, now)
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)])

        events = [(EventKind.CONTRIBUTION_RECORDED, {
            "value": receipt.value,
            "tokens": receipt.tokens,
            "bonus_factor": receipt.bonus_factor,
            "phase": receipt.phase,
        })]
        if receipt.locked:
            events.append((EventKind.ALLOCATION_LOCKED, {"tokens": receipt.tokens}))
        data = to_jsonable(receipt)
        return self._committed(receipt.participant, events, data, receipt.contributed_utc)

    def verify_kyc(
        self, caller: str, participant: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            released = self._sale.verify_kyc(caller, participant)
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)])

        pid = participant.strip()
        events = [(EventKind.KYC_VERIFIED, {"participant": pid, "by": caller})]
        if released:
            events.append((EventKind.ALLOCATION_RELEASED, {"participant": pid, "tokens": released}))
        return self._committed(
            caller, events, {"participant": pid, "tokens_released": released}, now,
        )

    def reject_kyc(
        self, caller: str, participant: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        pid = participant.strip()
        locked = self._sale.registry.locked_balance(pid)
        try:
            reversed_value = self._sale.reject_kyc(caller, participant)
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)])

        events = [(EventKind.KYC_REJECTED, {"participant": pid, "by": caller})]
        if locked:
            events.append((EventKind.ALLOCATION_REVERSED, {
                "participant": pid,
                "tokens": locked,
                "value": reversed_value,
            }))
        return self._committed(
            caller, events,
            {"participant": pid, "tokens_reversed": locked, "value_reversed": reversed_value},
            now,
        )

    # ------------------------------------------------------------------
    # Precommitments and vesting
    # ------------------------------------------------------------------

    def add_precommitment(
        self,
        caller: str,
        beneficiary: str,
        value: int,
        bonus_factor: int = 0,
        vesting_months: int = 0,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            receipt = self._sale.add_precommitment(
                caller, beneficiary, value,
                bonus_factor=bonus_factor,
                vesting_months=vesting_months,
                now=now,
            )
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)])

        events = [(EventKind.PRECOMMITMENT_ADDED, {
            "beneficiary": receipt.beneficiary,
            "value": receipt.value,
            "tokens": receipt.tokens,
            "bonus_factor": receipt.bonus_factor,
        })]
        if receipt.schedule is not None:
            events.append((EventKind.VESTING_SCHEDULED, {
                "beneficiary": receipt.beneficiary,
                "immediate_tokens": receipt.immediate_tokens,
                "deferred_tokens": receipt.deferred_tokens,
                "unlock_utc": receipt.schedule.unlock_utc.isoformat(),
                "vault_id": receipt.schedule.vault_id,
            }))
        return self._committed(caller, events, to_jsonable(receipt), receipt.recorded_utc)

    def release_vesting(
        self, beneficiary: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            released = self._sale.release_vesting(beneficiary, now)
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)])

        bid = beneficiary.strip()
        return self._committed(
            bid,
            [(EventKind.VESTING_RELEASED, {"beneficiary": bid, "tokens": released})],
            {"beneficiary": bid, "tokens_released": released},
            now,
        )

    def release_team_tokens(self, now: Optional[datetime] = None) -> ServiceResult:
        try:
            released = self._sale.release_team_tokens(now)
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)])

        team = self._sale.config.wallets.team
        return self._committed(
            team,
            [(EventKind.VESTING_RELEASED, {"beneficiary": team, "tokens": released})],
            {"beneficiary": team, "tokens_released": released},
            now,
        )

    # ------------------------------------------------------------------
    # Finalization and refunds
    # ------------------------------------------------------------------

    def finalize(
        self, caller: str, now: Optional[datetime] = None, force_clear: bool = False,
    ) -> ServiceResult:
        try:
            outcome = self._sale.finalize(caller, now, force_clear=force_clear)
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)])

        events = [
            (EventKind.PENDING_KYC_CLEARED, {"participant": p, "value": value})
            for p, value in outcome.cleared
        ]
        events.append((EventKind.SALE_FINALIZED, {
            "state": outcome.state.value,
            "wei_raised": outcome.wei_raised,
            "goal": outcome.goal,
            "forwarded": outcome.forwarded,
            "foundation_tokens": outcome.foundation_tokens,
            "team_tokens": outcome.team_tokens,
        }))
        return self._committed(caller, events, to_jsonable(outcome), outcome.finalized_utc)

    def claim_refund(
        self, participant: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            amount = self._sale.claim_refund(participant, now)
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)])

        pid = participant.strip()
        return self._committed(
            pid,
            [(EventKind.REFUND_CLAIMED, {"participant": pid, "value": amount})],
            {"participant": pid, "refunded": amount},
            now,
        )

    # ------------------------------------------------------------------
    # Status and queries
    # ------------------------------------------------------------------

    def participant(self, participant: str) -> ServiceResult:
        try:
            snapshot = self._sale.participant(participant)
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)])
        return ServiceResult(success=True, data=to_jsonable(snapshot))

    def check_invariants(self) -> ServiceResult:
        errors = self._sale.check_invariants()
        return ServiceResult(success=not errors, errors=errors)

    def status(self) -> dict[str, Any]:
        """Return sale-wide status summary."""
        config = self._sale.config
        return {
            "window": {
                "start_utc": config.window.start_utc.isoformat(),
                "end_utc": config.window.end_utc.isoformat(),
            },
            "rate": config.rate,
            "sale": to_jsonable(self._sale.snapshot()),
            "events": self._event_log.count if self._event_log is not None else 0,
            "audit_degraded": self._audit_degraded,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _committed(
        self,
        actor_id: str,
        events: list[tuple[EventKind, dict[str, Any]]],
        data: dict[str, Any],
        now: Optional[datetime],
    ) -> ServiceResult:
        warning = self._record_events(actor_id, events, now)
        if warning:
            data = dict(data, warnings=[warning])
        return ServiceResult(success=True, data=data)

    def _record_events(
        self,
        actor_id: str,
        events: list[tuple[EventKind, dict[str, Any]]],
        now: Optional[datetime],
    ) -> Optional[str]:
        """Append audit events for an operation that already took effect.

        MUST NOT undo the operation. On write failure the service is flagged
        audit_degraded and a warning string is returned.
        """
        if self._event_log is None:
            return None
        timestamp = now or datetime.now(timezone.utc)
        try:
            for kind, payload in events:
                self._event_log.append(EventRecord.create(
                    event_id=self._next_event_id(),
                    event_kind=kind,
                    actor_id=actor_id,
                    payload=payload,
                    timestamp_utc=timestamp,
                ))
        except OSError as e:
            self._audit_degraded = True
            return f"Audit degraded: {e}; sale state committed but event log is incomplete"
        return None
