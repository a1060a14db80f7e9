"""Tests for consumer-side context recovery."""

import json
import logging

import pytest
from conftest import (
    OTHER_TRACE_ID,
    OTHER_TRACEPARENT,
    TRACE_ID,
    TRACEPARENT,
    make_record,
)

from relaytrace.otel.config import PropagationConfig
from relaytrace.otel.recovery import ABSENT, CarrierSource, recover_context

BACKUP = "w3c_traceparent_orig"
XRAY_HEADER = (
    "Root=1-5e1b4151-5ac6c58f40c8b5e065b2dcf0;Parent=53995c3f42cd8ad8;Sampled=1"
)
ZERO_TRACEPARENT = f"00-{'0' * 32}-{'0' * 16}-01"


def notification(attributes: dict[str, str]) -> str:
    return json.dumps(
        {
            "Type": "Notification",
            "MessageId": "sns-1",
            "Message": json.dumps({"orderId": "ORD-1"}),
            "MessageAttributes": {
                name: {"Type": "String", "Value": value}
                for name, value in attributes.items()
            },
        }
    )


def analysis_entries(caplog: pytest.LogCaptureFixture) -> list[dict]:
    entries = [json.loads(r.getMessage()) for r in caplog.records]
    return [e for e in entries if e["message"] == "trace_context_analysis"]


class TestSlotSelection:
    """The backup slot wins whenever it is valid."""

    def test_backup_wins_over_regenerated_primary(self) -> None:
        record = make_record(
            traceparent=OTHER_TRACEPARENT,
            **{BACKUP: TRACEPARENT},
        )

        recovered = recover_context(record)

        assert recovered.source is CarrierSource.BACKUP
        assert recovered.identifier.to_traceparent() == TRACEPARENT
        assert recovered.trace_id == TRACE_ID
        assert recovered.diverged

    def test_primary_when_backup_missing(self) -> None:
        recovered = recover_context(make_record(traceparent=OTHER_TRACEPARENT))

        assert recovered.source is CarrierSource.PRIMARY
        assert recovered.trace_id == OTHER_TRACE_ID
        assert not recovered.diverged

    def test_malformed_backup_falls_back_to_primary(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        record = make_record(traceparent=TRACEPARENT, **{BACKUP: "invalid-format"})

        with caplog.at_level(logging.WARNING, logger="relaytrace.otel"):
            recovered = recover_context(record)

        assert recovered.source is CarrierSource.PRIMARY
        assert recovered.trace_id == TRACE_ID
        warnings = [json.loads(r.getMessage()) for r in caplog.records]
        assert warnings[0]["message"] == "malformed_trace_context"
        assert warnings[0]["slot"] == BACKUP

    def test_same_value_in_both_slots(self) -> None:
        record = make_record(traceparent=TRACEPARENT, **{BACKUP: TRACEPARENT})

        recovered = recover_context(record)

        assert recovered.source is CarrierSource.BACKUP
        assert not recovered.diverged

    def test_custom_slot_names(self) -> None:
        config = PropagationConfig(primary_attr="tp", backup_attr="tp_copy")
        record = make_record(tp=OTHER_TRACEPARENT, tp_copy=TRACEPARENT)

        recovered = recover_context(record, config)

        assert recovered.source is CarrierSource.BACKUP
        assert recovered.trace_id == TRACE_ID


class TestTransportHeader:
    """The transport-native header is the last resort."""

    def test_xray_header(self) -> None:
        recovered = recover_context(make_record(transport_header=XRAY_HEADER))

        assert recovered.source is CarrierSource.TRANSPORT
        assert recovered.trace_id == "5e1b41515ac6c58f40c8b5e065b2dcf0"

    def test_traceparent_header(self) -> None:
        recovered = recover_context(make_record(transport_header=TRACEPARENT))

        assert recovered.source is CarrierSource.TRANSPORT
        assert recovered.trace_id == TRACE_ID

    def test_slots_win_over_header(self) -> None:
        record = make_record(transport_header=XRAY_HEADER, traceparent=TRACEPARENT)

        assert recover_context(record).source is CarrierSource.PRIMARY

    def test_unrecognized_header_is_absent(self) -> None:
        assert recover_context(make_record(transport_header="garbage")) is ABSENT


class TestAbsent:
    """Nothing usable means absent, and a local identity is generated."""

    def test_no_context(self) -> None:
        recovered = recover_context(make_record())

        assert recovered is ABSENT
        assert not recovered.present
        assert recovered.trace_id is None

    def test_or_generate(self) -> None:
        recovered = recover_context(make_record()).or_generate()

        assert recovered.present
        assert recovered.source is CarrierSource.GENERATED

    def test_or_generate_keeps_present_context(self) -> None:
        recovered = recover_context(make_record(traceparent=TRACEPARENT))

        assert recovered.or_generate() is recovered

    def test_malformed_body_does_not_affect_recovery(self) -> None:
        record = make_record(body="not json", **{BACKUP: TRACEPARENT})

        assert recover_context(record).trace_id == TRACE_ID

    @pytest.mark.parametrize(
        "body",
        ['{"amount": ' + "1" * 5000 + "}", "[" * 100_000 + "]" * 100_000],
        ids=["oversized-integer", "deep-nesting"],
    )
    def test_undecodable_body_does_not_affect_recovery(self, body: str) -> None:
        record = make_record(body=body, **{BACKUP: TRACEPARENT})

        assert recover_context(record).trace_id == TRACE_ID


class TestEnvelopeAttributes:
    """Slots carried inside a notification envelope are read too."""

    def test_backup_from_envelope(self) -> None:
        record = make_record(
            body=notification({"traceparent": OTHER_TRACEPARENT, BACKUP: TRACEPARENT})
        )

        recovered = recover_context(record)

        assert recovered.source is CarrierSource.BACKUP
        assert recovered.trace_id == TRACE_ID

    def test_record_attributes_take_precedence(self) -> None:
        record = make_record(
            body=notification({BACKUP: OTHER_TRACEPARENT}),
            **{BACKUP: TRACEPARENT},
        )

        assert recover_context(record).trace_id == TRACE_ID

    def test_malformed_record_slot_falls_back_to_envelope_copy(self) -> None:
        record = make_record(
            body=notification({BACKUP: TRACEPARENT}),
            **{BACKUP: "00-bad"},
        )

        recovered = recover_context(record)

        assert recovered.source is CarrierSource.BACKUP
        assert recovered.trace_id == TRACE_ID


class TestZeroIds:
    """All-zero ids are present by default."""

    def test_zero_backup_is_present_by_default(self) -> None:
        record = make_record(traceparent=TRACEPARENT, **{BACKUP: ZERO_TRACEPARENT})

        recovered = recover_context(record)

        assert recovered.source is CarrierSource.BACKUP
        assert recovered.identifier.is_zero

    def test_zero_backup_absent_when_configured(self) -> None:
        record = make_record(traceparent=TRACEPARENT, **{BACKUP: ZERO_TRACEPARENT})

        recovered = recover_context(record, PropagationConfig(zero_ids_absent=True))

        assert recovered.source is CarrierSource.PRIMARY
        assert recovered.trace_id == TRACE_ID


class TestAnalysisLog:
    """Slot comparison is logged, never raised."""

    @pytest.mark.parametrize(
        ("attributes", "match"),
        [
            ({"traceparent": TRACEPARENT, BACKUP: TRACEPARENT}, "SAME"),
            ({"traceparent": OTHER_TRACEPARENT, BACKUP: TRACEPARENT}, "DIFFERENT"),
            ({BACKUP: TRACEPARENT}, "PARTIAL"),
        ],
    )
    def test_match_label(
        self,
        caplog: pytest.LogCaptureFixture,
        attributes: dict[str, str],
        match: str,
    ) -> None:
        with caplog.at_level(logging.DEBUG, logger="relaytrace.otel"):
            recover_context(make_record(**attributes))

        (entry,) = analysis_entries(caplog)
        assert entry["traceparentMatch"] == match
        assert entry["correlation"] == {
            "traceId": TRACE_ID,
            "spanId": "50d362e330737a0f",
            "messageId": "msg-1",
        }

    def test_no_analysis_without_slots(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.DEBUG, logger="relaytrace.otel"):
            recover_context(make_record())

        assert analysis_entries(caplog) == []
