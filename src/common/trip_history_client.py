"""
Trip history client for the Kerala Bus Tracker.

This module stores the per-day Trip records in an AWS DynamoDB table keyed by
route_id (partition key) and trip_date (sort key, "yyyy-MM-dd"). Writes are
conditional so that concurrent writers cannot overwrite each other: the day's
trip is created only if it does not exist yet, and a stop's actual arrival
time is set only if it has not been set already.
"""

import copy
import time
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import ClientError

from src.common.models import Stop, StopArrival, Trip


logger = logging.getLogger(__name__)

ARRIVAL_TIME_FORMAT = "%I:%M %p"
CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"

RETRYABLE_ERROR_CODES = (
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
    "InternalServerError",
)


def _to_dynamodb_value(value: Any) -> Any:
    """Convert floats to Decimal recursively, as the DynamoDB serializer requires."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamodb_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_dynamodb_value(v) for v in value]
    return value


class TripHistoryClient:
    """
    Wrapper for DynamoDB trip history operations with retry logic.

    Throttling and transient server errors are retried with exponential
    backoff. Failed write conditions are not errors: they mean the record
    was already written.
    """

    def __init__(
        self,
        table_name: str,
        region_name: str = "eu-west-1",
        max_retries: int = 3,
        dynamodb_client: Optional[Any] = None
    ):
        """
        Initialize the trip history client.

        Args:
            table_name: Name of the DynamoDB table
            region_name: AWS region name
            max_retries: Maximum number of attempts for throttled calls
            dynamodb_client: Optional boto3 DynamoDB client (for testing)
        """
        self.table_name = table_name
        self.region_name = region_name
        self.max_retries = max_retries
        self.dynamodb_client = dynamodb_client or boto3.client('dynamodb', region_name=region_name)

        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    def record_arrival(self, stops: List[Stop], arrival: StopArrival) -> bool:
        """
        Set the actual arrival time of one stop in the day's trip.

        The trip is created from a copy of the route's stops on the first
        arrival of the day. Recording the same stop twice on one day is a
        no-op.

        Args:
            stops: Current stops of the route, copied into a new trip
            arrival: Arrival to record

        Returns:
            True if the arrival was written, False if it was already recorded

        Raises:
            ValueError: If the arrival is invalid for the given stops
            ClientError: If DynamoDB fails after all retries
        """
        arrival.validate()
        if arrival.stop_index >= len(stops):
            raise ValueError(
                f"stop_index {arrival.stop_index} out of range for route with {len(stops)} stops"
            )

        trip_date = arrival.arrival_time.strftime("%Y-%m-%d")
        actual_time = arrival.arrival_time.strftime(ARRIVAL_TIME_FORMAT)

        if self._create_trip(arrival.route_id, trip_date, stops, arrival.stop_index, actual_time):
            logger.info(f"Created trip {arrival.route_id}/{trip_date}")
            return True

        return self._set_actual_arrival(arrival.route_id, trip_date, arrival.stop_index, actual_time)

    def get_trip(self, route_id: str, trip_date: str) -> Optional[Trip]:
        """
        Fetch the trip of a route for a day.

        Args:
            route_id: Route/bus identifier
            trip_date: Day, "yyyy-MM-dd"

        Returns:
            The Trip, or None if nothing was recorded that day
        """
        response = self._call_with_retry(
            'GetItem',
            self.dynamodb_client.get_item,
            TableName=self.table_name,
            Key=self._key(route_id, trip_date),
            ConsistentRead=True,
        )

        item = response.get('Item')
        if not item:
            return None

        data = {k: self._deserializer.deserialize(v) for k, v in item.items()}
        return Trip.from_dict({'date': data.get('trip_date'), 'stops': data.get('stops', [])})

    def _create_trip(
        self,
        route_id: str,
        trip_date: str,
        stops: List[Stop],
        stop_index: int,
        actual_time: str
    ) -> bool:
        trip = Trip(date=trip_date, stops=[copy.deepcopy(stop) for stop in stops])
        for stop in trip.stops:
            stop.actual_arrival_time = None
        trip.mark_arrival(stop_index, actual_time)

        item = {
            'route_id': route_id,
            'trip_date': trip_date,
            'stops': [stop.to_dict() for stop in trip.stops],
        }

        try:
            self._call_with_retry(
                'PutItem',
                self.dynamodb_client.put_item,
                TableName=self.table_name,
                Item=self._serialize_item(item),
                ConditionExpression='attribute_not_exists(route_id)',
            )
            return True
        except ClientError as e:
            if self._error_code(e) == CONDITIONAL_CHECK_FAILED:
                return False
            raise

    def _set_actual_arrival(self, route_id: str, trip_date: str, stop_index: int, actual_time: str) -> bool:
        stop_path = f"stops[{stop_index}]"

        try:
            self._call_with_retry(
                'UpdateItem',
                self.dynamodb_client.update_item,
                TableName=self.table_name,
                Key=self._key(route_id, trip_date),
                UpdateExpression=f"SET {stop_path}.actualArrivalTime = :actual",
                ConditionExpression=(
                    f"attribute_exists({stop_path}) AND "
                    f"attribute_not_exists({stop_path}.actualArrivalTime)"
                ),
                ExpressionAttributeValues={':actual': {'S': actual_time}},
            )
            return True
        except ClientError as e:
            if self._error_code(e) == CONDITIONAL_CHECK_FAILED:
                logger.debug(f"Arrival at stop {stop_index} already recorded for {route_id}/{trip_date}")
                return False
            raise

    def _call_with_retry(self, operation_name: str, func: Callable[..., Dict], **params) -> Dict:
        for attempt in range(self.max_retries):
            try:
                return func(**params)

            except ClientError as e:
                error_code = self._error_code(e)

                if error_code not in RETRYABLE_ERROR_CODES:
                    raise

                if attempt == self.max_retries - 1:
                    logger.error(
                        f"DynamoDB {operation_name} failed after {self.max_retries} attempts: "
                        f"{error_code} - {str(e)}"
                    )
                    raise

                wait_time = 2 ** attempt

                logger.warning(
                    f"DynamoDB {operation_name} failed (attempt {attempt + 1}/{self.max_retries}): "
                    f"{error_code}. Retrying in {wait_time}s..."
                )

                time.sleep(wait_time)

        return {}

    def _key(self, route_id: str, trip_date: str) -> Dict[str, Dict[str, str]]:
        return {'route_id': {'S': route_id}, 'trip_date': {'S': trip_date}}

    def _serialize_item(self, item: Dict[str, Any]) -> Dict[str, Any]:
        return {k: self._serializer.serialize(_to_dynamodb_value(v)) for k, v in item.items()}

    @staticmethod
    def _error_code(error: ClientError) -> str:
        return error.response.get('Error', {}).get('Code', 'Unknown')
