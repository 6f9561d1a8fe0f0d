"""
Configuration loader for the Kerala Bus Tracker.

This module provides functionality to load routes, their stops and the
simulation settings from YAML configuration files and convert them into Bus
and SimulationSettings objects.
"""

import logging
import yaml
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from .models import NEXT_STOP_NONE, Bus, Location, SimulationSettings, Stop


logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""
    pass


class ConfigLoader:
    """
    Loads and validates bus route configuration from YAML files.

    The loader parses routes.yaml files containing routes with their scheduled
    stops and an optional simulation section, and creates Bus and
    SimulationSettings objects.
    """

    SETTINGS_FIELDS = {
        'tick_interval_seconds': int,
        'live_window_seconds': float,
        'status_mode': str,
        'on_time_band_minutes': int,
        'delayed_probability': float,
        'early_probability': float,
    }

    def __init__(self, config_path: str):
        """
        Initialize the configuration loader.

        Args:
            config_path: Path to the YAML configuration file

        Raises:
            ConfigurationError: If the file doesn't exist
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        self._raw_config: Dict = {}
        self._routes: List[Bus] = []
        self._settings: Optional[SimulationSettings] = None

    def load(self) -> None:
        """
        Load and parse the YAML configuration file.

        Raises:
            ConfigurationError: If the file can't be parsed or is invalid
        """
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration file: {e}")

        if not self._raw_config:
            raise ConfigurationError("Configuration file is empty")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Configuration must be a mapping")

        if 'routes' not in self._raw_config:
            raise ConfigurationError("Configuration must contain 'routes' key")

        if not isinstance(self._raw_config['routes'], list):
            raise ConfigurationError("'routes' must be a list")

        if not self._raw_config['routes']:
            raise ConfigurationError("Configuration must contain at least one route")

    def parse_routes(self) -> List[Bus]:
        """
        Parse routes from the loaded configuration.

        Returns:
            List of Bus objects, each carrying its stops

        Raises:
            ConfigurationError: If route data is invalid
        """
        if not self._raw_config:
            raise ConfigurationError("Configuration not loaded. Call load() first.")

        routes = []
        route_ids_seen = set()

        for route_data in self._raw_config['routes']:
            if not isinstance(route_data, dict):
                raise ConfigurationError(f"Route entry must be a mapping, got {route_data!r}")

            try:
                if 'id' not in route_data:
                    raise ConfigurationError("Route missing 'id' field")
                if 'name' not in route_data:
                    raise ConfigurationError(f"Route {route_data['id']} missing 'name' field")
                if 'stops' not in route_data:
                    raise ConfigurationError(f"Route {route_data['id']} missing 'stops' field")

                route_id = str(route_data['id'])

                if route_id in route_ids_seen:
                    raise ConfigurationError(f"Duplicate route id: {route_id}")
                route_ids_seen.add(route_id)

                stops = self._parse_stops(route_data['stops'], route_id)
                if len(stops) < 2:
                    logger.warning(f"Route {route_id} has fewer than two stops and will not move")

                route = Bus(
                    id=route_id,
                    name=str(route_data['name']),
                    stops=stops,
                    current_location=Location(stops[0].location.lat, stops[0].location.lng) if stops else Location(),
                    next_stop_name=stops[0].name if stops else NEXT_STOP_NONE,
                    round_trip=bool(route_data.get('round_trip', False)),
                )

                route.validate()

                routes.append(route)

            except (KeyError, ValueError, TypeError) as e:
                raise ConfigurationError(f"Error parsing route {route_data.get('id', 'unknown')}: {e}")

        self._routes = routes
        return routes

    def _parse_stops(self, stops_data: List[Dict], route_id: str) -> List[Stop]:
        """
        Parse stops from route configuration.

        Stops whose times cannot be parsed are kept: the tracker leaves them
        out of timing calculations but they remain part of the route.

        Args:
            stops_data: List of stop dictionaries
            route_id: ID of the route (for error messages)

        Returns:
            List of Stop objects

        Raises:
            ConfigurationError: If stop data is invalid
        """
        if not isinstance(stops_data, list):
            raise ConfigurationError(f"Route {route_id}: 'stops' must be a list")

        stops = []

        for stop_data in stops_data:
            required_fields = ['name', 'arrival_time', 'lat', 'lng']
            for field in required_fields:
                if field not in stop_data:
                    raise ConfigurationError(
                        f"Route {route_id}: Stop missing required field '{field}'"
                    )

            name = stop_data['name']

            try:
                departure_time = stop_data.get('departure_time')
                stop = Stop(
                    name=str(name),
                    arrival_time=str(stop_data['arrival_time']),
                    location=Location(lat=float(stop_data['lat']), lng=float(stop_data['lng'])),
                    departure_time=str(departure_time) if departure_time is not None else None,
                )

                stop.validate()

                stops.append(stop)

            except (ValueError, TypeError) as e:
                raise ConfigurationError(
                    f"Route {route_id}, Stop {name}: Invalid data - {e}"
                )

        return stops

    def parse_settings(self) -> SimulationSettings:
        """
        Parse the optional simulation section.

        Returns:
            SimulationSettings, with defaults for anything not configured

        Raises:
            ConfigurationError: If a setting is unknown or invalid
        """
        if not self._raw_config:
            raise ConfigurationError("Configuration not loaded. Call load() first.")

        section = self._raw_config.get('simulation') or {}
        if not isinstance(section, dict):
            raise ConfigurationError("'simulation' must be a mapping")

        values = {}
        for key, value in section.items():
            if key not in self.SETTINGS_FIELDS:
                raise ConfigurationError(f"Unknown simulation setting: {key}")
            try:
                values[key] = self.SETTINGS_FIELDS[key](value)
            except (ValueError, TypeError) as e:
                raise ConfigurationError(f"Invalid value for simulation setting {key}: {e}")

        settings = SimulationSettings(**values)
        try:
            settings.validate()
        except ValueError as e:
            raise ConfigurationError(f"Invalid simulation settings: {e}")

        self._settings = settings
        return settings

    def get_routes(self) -> List[Bus]:
        """
        Get the parsed routes.

        Raises:
            ConfigurationError: If routes haven't been parsed yet
        """
        if not self._routes:
            raise ConfigurationError("Routes not parsed. Call parse_routes() first.")
        return self._routes

    def get_route_by_id(self, route_id: str) -> Bus:
        """
        Get a specific route by ID.

        Args:
            route_id: The route ID to search for

        Returns:
            The Bus object

        Raises:
            ConfigurationError: If route not found or routes not parsed
        """
        if not self._routes:
            raise ConfigurationError("Routes not parsed. Call parse_routes() first.")

        for route in self._routes:
            if route.id == route_id:
                return route

        raise ConfigurationError(f"Route not found: {route_id}")


def load_configuration(config_path: str) -> Tuple[List[Bus], SimulationSettings]:
    """
    Convenience function to load and parse configuration in one call.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Tuple of (routes, settings)

    Raises:
        ConfigurationError: If loading or validation fails
    """
    loader = ConfigLoader(config_path)
    loader.load()
    routes = loader.parse_routes()
    settings = loader.parse_settings()

    return routes, settings
