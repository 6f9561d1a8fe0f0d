"""
Unit tests for the trip history client.

Tests cover conditional trip creation, compare-and-set arrival updates,
retry logic, and reading trips back.
"""

import pytest
from datetime import datetime
from unittest.mock import Mock, call, patch

from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from src.common.models import Location, Stop, StopArrival
from src.common.trip_history_client import TripHistoryClient


def client_error(code, operation='PutItem'):
    return ClientError({'Error': {'Code': code, 'Message': code}}, operation)


def make_stops():
    return [
        Stop("Pathanamthitta", "08:00 AM", Location(9.2648, 76.7870)),
        Stop("Adoor", "08:20 AM", Location(9.1611, 76.7366)),
        Stop("Kollam", "09:00 AM", Location(8.8932, 76.6141)),
    ]


def make_arrival(stop_index=1, arrival_time=datetime(2026, 3, 2, 8, 21)):
    return StopArrival(route_id="pta-klm", stop_index=stop_index, arrival_time=arrival_time)


@pytest.fixture
def dynamodb():
    mock = Mock()
    mock.put_item.return_value = {}
    mock.update_item.return_value = {}
    return mock


@pytest.fixture
def client(dynamodb):
    return TripHistoryClient(table_name="trip-history", dynamodb_client=dynamodb)


class TestTripHistoryClientInit:
    """Tests for TripHistoryClient initialization."""

    def test_init_with_client(self, dynamodb):
        client = TripHistoryClient(table_name="trips", region_name="ap-south-1", dynamodb_client=dynamodb)

        assert client.table_name == "trips"
        assert client.region_name == "ap-south-1"
        assert client.max_retries == 3
        assert client.dynamodb_client == dynamodb


class TestRecordArrival:
    """Tests for record_arrival."""

    def test_first_arrival_creates_trip(self, client, dynamodb):
        """Test that the first arrival of the day creates the trip conditionally."""
        assert client.record_arrival(make_stops(), make_arrival()) is True

        dynamodb.update_item.assert_not_called()
        kwargs = dynamodb.put_item.call_args.kwargs
        assert kwargs['TableName'] == "trip-history"
        assert kwargs['ConditionExpression'] == 'attribute_not_exists(route_id)'

        item = kwargs['Item']
        assert item['route_id'] == {'S': 'pta-klm'}
        assert item['trip_date'] == {'S': '2026-03-02'}
        stops = item['stops']['L']
        assert len(stops) == 3
        assert stops[1]['M']['actualArrivalTime'] == {'S': '08:21 AM'}
        assert 'actualArrivalTime' not in stops[0]['M']
        assert stops[0]['M']['location']['M']['lat'] == {'N': '9.2648'}

    def test_existing_trip_sets_stop(self, client, dynamodb):
        """Test the fallback to a conditional update when the trip exists."""
        dynamodb.put_item.side_effect = client_error('ConditionalCheckFailedException')

        assert client.record_arrival(make_stops(), make_arrival(stop_index=2)) is True

        kwargs = dynamodb.update_item.call_args.kwargs
        assert kwargs['Key'] == {'route_id': {'S': 'pta-klm'}, 'trip_date': {'S': '2026-03-02'}}
        assert kwargs['UpdateExpression'] == "SET stops[2].actualArrivalTime = :actual"
        assert "attribute_not_exists(stops[2].actualArrivalTime)" in kwargs['ConditionExpression']
        assert kwargs['ExpressionAttributeValues'] == {':actual': {'S': '08:21 AM'}}

    def test_already_recorded_returns_false(self, client, dynamodb):
        """Test that a second writer for the same stop is a no-op."""
        dynamodb.put_item.side_effect = client_error('ConditionalCheckFailedException')
        dynamodb.update_item.side_effect = client_error('ConditionalCheckFailedException', 'UpdateItem')

        assert client.record_arrival(make_stops(), make_arrival()) is False

    def test_stale_actual_times_not_copied(self, client, dynamodb):
        """Test that a new trip starts without actual arrivals and inputs are untouched."""
        stops = make_stops()
        stops[0].actual_arrival_time = "08:01 AM"

        client.record_arrival(stops, make_arrival())

        trip_stops = dynamodb.put_item.call_args.kwargs['Item']['stops']['L']
        assert 'actualArrivalTime' not in trip_stops[0]['M']
        assert stops[0].actual_arrival_time == "08:01 AM"
        assert stops[1].actual_arrival_time is None

    def test_out_of_range_stop_raises(self, client, dynamodb):
        with pytest.raises(ValueError, match="out of range"):
            client.record_arrival(make_stops(), make_arrival(stop_index=3))

        dynamodb.put_item.assert_not_called()

    def test_invalid_arrival_raises(self, client):
        with pytest.raises(ValueError):
            client.record_arrival(make_stops(), make_arrival(stop_index=-1))

    def test_non_retryable_error_raises(self, client, dynamodb):
        dynamodb.put_item.side_effect = client_error('AccessDeniedException')

        with pytest.raises(ClientError):
            client.record_arrival(make_stops(), make_arrival())

        dynamodb.update_item.assert_not_called()


class TestRetry:
    """Tests for retry with exponential backoff."""

    @patch('src.common.trip_history_client.time.sleep')
    def test_retries_throttled_calls(self, mock_sleep, client, dynamodb):
        """Test that throttling is retried with exponential backoff."""
        dynamodb.put_item.side_effect = [
            client_error('ProvisionedThroughputExceededException'),
            client_error('ThrottlingException'),
            {},
        ]

        assert client.record_arrival(make_stops(), make_arrival()) is True

        assert dynamodb.put_item.call_count == 3
        assert mock_sleep.call_args_list == [call(1), call(2)]

    @patch('src.common.trip_history_client.time.sleep')
    def test_gives_up_after_max_retries(self, mock_sleep, client, dynamodb):
        dynamodb.put_item.side_effect = client_error('ThrottlingException')

        with pytest.raises(ClientError):
            client.record_arrival(make_stops(), make_arrival())

        assert dynamodb.put_item.call_count == 3
        assert mock_sleep.call_count == 2


class TestGetTrip:
    """Tests for get_trip."""

    def test_returns_trip(self, client, dynamodb):
        serializer = TypeSerializer()
        item = {
            'route_id': 'pta-klm',
            'trip_date': '2026-03-02',
            'stops': [
                {'name': 'Pathanamthitta', 'arrivalTime': '08:00 AM',
                 'location': {'lat': 9, 'lng': 76}, 'actualArrivalTime': '08:02 AM'},
                {'name': 'Adoor', 'arrivalTime': '08:20 AM', 'location': {'lat': 9, 'lng': 76}},
            ],
        }
        dynamodb.get_item.return_value = {'Item': {k: serializer.serialize(v) for k, v in item.items()}}

        trip = client.get_trip('pta-klm', '2026-03-02')

        assert trip.date == '2026-03-02'
        assert [stop.name for stop in trip.stops] == ['Pathanamthitta', 'Adoor']
        assert trip.stops[0].actual_arrival_time == '08:02 AM'
        assert trip.stops[1].actual_arrival_time is None
        assert trip.stops[0].location == Location(9.0, 76.0)
        dynamodb.get_item.assert_called_once_with(
            TableName='trip-history',
            Key={'route_id': {'S': 'pta-klm'}, 'trip_date': {'S': '2026-03-02'}},
            ConsistentRead=True,
        )

    def test_missing_trip_returns_none(self, client, dynamodb):
        dynamodb.get_item.return_value = {}

        assert client.get_trip('pta-klm', '2026-03-03') is None
