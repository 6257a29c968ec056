"""
Tests for vehicle_backup.schema module.

Tests the snapshot line format shared by the writer and readers.
"""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from vehicle_backup.models import VehicleSnapshot
from vehicle_backup.schema import (
    SNAPSHOT_COLUMNS,
    format_snapshot_line,
    parse_snapshot_line,
)


class TestFormatSnapshotLine:
    """Test rendering a snapshot as a CSV line."""

    def test_should_render_fields_in_column_order(
        self,
        sample_timestamp: datetime,
    ) -> None:
        """Should write id, vin, latitude, longitude, odometer, timestamp."""
        snapshot = VehicleSnapshot(
            id='d1',
            vin='V1',
            latitude=45.0,
            longitude=-75.0,
            odometer=0,
            timestamp=sample_timestamp,
        )

        assert format_snapshot_line(snapshot) == (
            'd1,V1,45.0,-75.0,0,2024-01-15T12:00:00+00:00'
        )

    def test_should_write_empty_vin_when_absent(
        self,
        sample_timestamp: datetime,
    ) -> None:
        """Should leave the VIN column empty rather than writing 'None'."""
        snapshot = VehicleSnapshot(id='b3', timestamp=sample_timestamp)

        assert format_snapshot_line(snapshot).split(',')[1] == ''

    def test_should_keep_full_coordinate_precision(
        self,
        sample_timestamp: datetime,
    ) -> None:
        """Should not round coordinates."""
        snapshot = VehicleSnapshot(
            id='b1',
            latitude=43.452345678901,
            longitude=-80.498765432101,
            timestamp=sample_timestamp,
        )

        fields = parse_snapshot_line(format_snapshot_line(snapshot))

        assert float(fields['latitude']) == snapshot.latitude
        assert float(fields['longitude']) == snapshot.longitude

    def test_should_convert_timestamp_to_utc(self) -> None:
        """Should normalize offset-aware timestamps to UTC."""
        eastern = timezone(timedelta(hours=-5))
        snapshot = VehicleSnapshot(
            id='b1',
            timestamp=datetime(2024, 1, 15, 7, 0, 0, tzinfo=eastern),
        )

        fields = parse_snapshot_line(format_snapshot_line(snapshot))

        assert fields['timestamp'] == '2024-01-15T12:00:00+00:00'

    def test_should_treat_naive_timestamp_as_utc(self) -> None:
        """Should assume UTC for timestamps without a timezone."""
        snapshot = VehicleSnapshot(id='b1', timestamp=datetime(2024, 1, 15, 12, 0, 0))

        fields = parse_snapshot_line(format_snapshot_line(snapshot))

        assert datetime.fromisoformat(fields['timestamp']) == datetime(
            2024, 1, 15, 12, 0, 0, tzinfo=UTC
        )

    def test_should_replace_separators_inside_values(
        self,
        sample_timestamp: datetime,
    ) -> None:
        """Should keep one line with the right field count for hostile VINs."""
        snapshot = VehicleSnapshot(
            id='b1',
            vin='AB,C\nD',
            timestamp=sample_timestamp,
        )

        line = format_snapshot_line(snapshot)

        assert '\n' not in line
        assert parse_snapshot_line(line)['vin'] == 'AB C D'


class TestParseSnapshotLine:
    """Test splitting a snapshot line into columns."""

    def test_should_map_columns_by_name(self) -> None:
        """Should return every column keyed by name."""
        fields = parse_snapshot_line('b1,VIN,1.0,2.0,3,2024-01-15T12:00:00+00:00\n')

        assert list(fields) == SNAPSHOT_COLUMNS
        assert fields['odometer'] == '3'

    def test_should_raise_on_wrong_field_count(self) -> None:
        """Should reject lines that do not have six fields."""
        with pytest.raises(ValueError, match='Expected 6 fields'):
            parse_snapshot_line('b1,VIN,1.0')
