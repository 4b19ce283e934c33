import pytest

from server_clock.time_protocol import (
    MAX_EPOCH_MS,
    DriftStatistics,
    ProbeResult,
    TimeSample,
    format_http_date,
    parse_header_time,
    round_to,
)


class TestTimeSample:
    def test_four_timestamp_offset_and_delay(self):
        s = TimeSample(
            client_send_time=1000,
            server_receive_time=1010,
            server_send_time=1015,
            client_receive_time=1020,
        )
        # offset = ((1010-1000) + (1015-1020)) / 2 = 2.5
        assert s.clock_offset == 2.5
        # delay = ((1020-1000) - (1015-1010)) / 2 = 7.5
        assert s.round_trip_delay == 7.5
        assert s.valid
        assert not s.low_quality

    def test_delay_falls_back_to_half_rtt(self):
        s = TimeSample(client_send_time=1000, client_receive_time=1100)
        assert s.round_trip_delay == 50
        assert s.clock_offset is None
        assert not s.valid

    def test_single_server_time_stands_for_both(self):
        s = TimeSample(client_send_time=1000, client_receive_time=1100, server_send_time=5050)
        assert s.round_trip_delay == 50
        assert s.clock_offset == 4000

    def test_negative_delay_is_flagged_not_fatal(self):
        s = TimeSample(
            client_send_time=1000,
            server_receive_time=1000,
            server_send_time=1100,
            client_receive_time=1010,
        )
        assert s.round_trip_delay == -45
        assert s.low_quality
        assert "delay=-45.0ms" in str(s)


class TestParseHeaderTime:
    def test_http_date(self):
        assert parse_header_time("Tue, 15 Nov 1994 08:12:31 GMT") == 784887151000

    def test_iso_8601(self):
        assert parse_header_time("2024-01-01T00:00:00Z") == 1704067200000

    def test_naive_iso_is_utc(self):
        assert parse_header_time("2024-01-01T00:00:00") == 1704067200000

    def test_epoch_seconds_and_millis(self):
        assert parse_header_time("1700000000") == 1_700_000_000_000
        assert parse_header_time("1700000000123") == 1_700_000_000_123

    @pytest.mark.parametrize("value", [None, "", "   ", "not a date", "-5", "nan"])
    def test_invalid_values(self, value):
        assert parse_header_time(value) is None

    @pytest.mark.parametrize(
        "value",
        [
            "99999999999999999",
            "1e300",
            "Fri, 31 Dec 9999 23:00:00 GMT",
            "9999-12-31T23:00:00Z",
        ],
    )
    def test_times_beyond_datetime_range_are_rejected(self, value):
        assert parse_header_time(value) is None

    def test_latest_accepted_time(self):
        assert parse_header_time(str(int(MAX_EPOCH_MS))) == MAX_EPOCH_MS
        assert parse_header_time(str(int(MAX_EPOCH_MS) + 1)) is None

    def test_format_http_date(self):
        assert format_http_date(0) == "Thu, 01 Jan 1970 00:00:00 GMT"
        assert parse_header_time(format_http_date(1_700_000_003_000)) == 1_700_000_003_000


def test_round_to_resolution():
    assert round_to(1234.0, 10) == 1230
    assert round_to(1236.0, 10) == 1240
    assert round_to(1234.0, 0) == 1234.0


def test_probe_result_fallback_flag():
    assert ProbeResult("x", "fallback", 0.1).is_fallback
    assert not ProbeResult("1700000000", "date", 0.9).is_fallback
    assert ProbeResult("1700000000", "date", 0.9).timestamp_ms == 1_700_000_000_000


def test_drift_confidence_saturates():
    assert DriftStatistics().confidence == 0.0
    assert DriftStatistics(sample_count=5).confidence == 0.5
    assert DriftStatistics(sample_count=25).confidence == 1.0
