"""Recover the authoritative trace identity of a delivered record.

A record may hold up to three candidate identities:

- the backup slot, written by the producer and unknown to relays;
- the primary slot, which a fan-out hop may have restamped or dropped;
- a transport-native trace header added on some delivery paths.

Slots are read from the record's transport attributes first and from a
notification envelope's attribute copy second. The backup wins whenever it
is valid. Primary and backup disagreeing is expected after relay mutation
and is only logged.
"""

import enum
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass

from relaytrace.core.errors import preview
from relaytrace.core.logging import correlation, log_event
from relaytrace.otel.config import PropagationConfig
from relaytrace.otel.source import parse_or_warn, usable
from relaytrace.otel.traceparent import (
    TraceIdentifier,
    generate_trace_identifier,
    parse_traceparent,
    parse_traceparent_strict,
)
from relaytrace.otel.xray import parse_xray_header
from relaytrace.pubsub.envelope import EnvelopeConfig, envelope_attributes
from relaytrace.pubsub.message import InboundRecord, MessageAttribute

_log = logging.getLogger("relaytrace.otel")


class CarrierSource(enum.StrEnum):
    BACKUP = "backup"
    PRIMARY = "primary"
    TRANSPORT = "transport"
    GENERATED = "generated"


@dataclass(frozen=True)
class RecoveredContext:
    """Outcome of recovery for one record.

    ``identifier`` is None when nothing was recoverable; callers then use
    :meth:`or_generate` to get a local identity. ``primary`` and ``backup``
    keep the valid slot values seen, for diagnostics.
    """

    identifier: TraceIdentifier | None
    source: CarrierSource | None = None
    primary: TraceIdentifier | None = None
    backup: TraceIdentifier | None = None

    @property
    def present(self) -> bool:
        return self.identifier is not None

    @property
    def diverged(self) -> bool:
        """True when both slots were valid but held different values."""
        return (
            self.primary is not None
            and self.backup is not None
            and self.primary != self.backup
        )

    @property
    def trace_id(self) -> str | None:
        return self.identifier.trace_id if self.identifier else None

    def or_generate(self) -> "RecoveredContext":
        """Return self if present, else a context with a fresh identity."""
        if self.present:
            return self
        return RecoveredContext(
            identifier=generate_trace_identifier(),
            source=CarrierSource.GENERATED,
            primary=self.primary,
            backup=self.backup,
        )


ABSENT = RecoveredContext(identifier=None)


def _slot_values(
    record: InboundRecord,
    name: str,
    envelope_attrs: Mapping[str, MessageAttribute],
) -> Iterator[str]:
    direct = record.attribute(name)
    if direct is not None:
        yield direct
    wrapped = envelope_attrs.get(name)
    if wrapped is not None:
        yield wrapped.value


def _read_slot(
    record: InboundRecord,
    name: str,
    envelope_attrs: Mapping[str, MessageAttribute],
    config: PropagationConfig,
) -> TraceIdentifier | None:
    for text in _slot_values(record, name, envelope_attrs):
        identifier = usable(
            parse_or_warn(text, parse_traceparent_strict, slot=name, logger=_log),
            config,
        )
        if identifier is not None:
            return identifier
    return None


def _from_transport_header(
    header: str,
    config: PropagationConfig,
) -> TraceIdentifier | None:
    identifier = parse_traceparent(header)
    if identifier is None:
        identifier = parse_xray_header(header)
    if identifier is None:
        log_event(
            _log,
            logging.WARNING,
            "malformed_trace_context",
            slot="transport_header",
            reason="unrecognized transport trace header",
            value=preview(header),
        )
    return usable(identifier, config)


def recover_context(
    record: InboundRecord,
    config: PropagationConfig | None = None,
    envelope_config: EnvelopeConfig | None = None,
) -> RecoveredContext:
    """Select the authoritative identity for ``record``.

    Order: backup slot, primary slot, transport-native header. Returns
    :data:`ABSENT` when none yields a usable identifier. Never raises.
    """
    config = config or PropagationConfig()
    envelope_attrs = envelope_attributes(record.raw_body, envelope_config)

    backup = _read_slot(record, config.backup_attr, envelope_attrs, config)
    primary = _read_slot(record, config.primary_attr, envelope_attrs, config)

    if backup is not None or primary is not None:
        _log_analysis(record, primary, backup)

    if backup is not None:
        return RecoveredContext(backup, CarrierSource.BACKUP, primary, backup)
    if primary is not None:
        return RecoveredContext(primary, CarrierSource.PRIMARY, primary, backup)

    if record.transport_header:
        native = _from_transport_header(record.transport_header, config)
        if native is not None:
            return RecoveredContext(native, CarrierSource.TRANSPORT)

    return ABSENT


def _log_analysis(
    record: InboundRecord,
    primary: TraceIdentifier | None,
    backup: TraceIdentifier | None,
) -> None:
    if primary is None or backup is None:
        match = "PARTIAL"
    else:
        match = "SAME" if primary == backup else "DIFFERENT"
    level = logging.DEBUG if match == "SAME" else logging.INFO
    log_event(
        _log,
        level,
        "trace_context_analysis",
        traceparentPrimary=primary.to_traceparent() if primary else None,
        traceparentBackup=backup.to_traceparent() if backup else None,
        transportHeader=record.transport_header,
        traceparentMatch=match,
        correlation=correlation(backup or primary, messageId=record.record_id),
    )
