"""
Datasource settings loaded from a YAML file
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .query_url import parse_query_params
from .settings import DEFAULT_HTTP_METHOD, EXTERNAL_CALL_TIMEOUT, SUPPORTED_HTTP_METHODS
from .step import StepDefaults, parse_interval
from ..exceptions import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

SETTINGS_SECTION = 'prometheus'


@dataclass
class DatasourceSettings:
    url: str
    http_method: str = DEFAULT_HTTP_METHOD
    custom_query_parameters: str = ''
    time_interval: str = ''
    headers: Dict[str, str] = field(default_factory=dict)
    ssl_verify: bool = True
    timeout: float = EXTERNAL_CALL_TIMEOUT
    max_workers: Optional[int] = None
    step_defaults: StepDefaults = field(default_factory=StepDefaults)
    query_params: List[Tuple[str, str]] = field(default_factory=list, init=False)

    def __post_init__(self):
        if not self.url or not str(self.url).strip():
            raise ConfigurationError("url can't be blank")
        self.url = str(self.url).strip()

        self.http_method = (self.http_method or DEFAULT_HTTP_METHOD).upper()
        if self.http_method not in SUPPORTED_HTTP_METHODS:
            raise ConfigurationError(f"Unsupported http method: {self.http_method}")

        try:
            self.query_params = parse_query_params(self.custom_query_parameters)
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e

        if self.time_interval:
            try:
                parse_interval(self.time_interval)
            except ValidationError as e:
                raise ConfigurationError(f"Invalid time_interval {self.time_interval!r}: {e}") from e

        if isinstance(self.ssl_verify, str):
            self.ssl_verify = self.ssl_verify.lower() != 'false'

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'DatasourceSettings':
        if not isinstance(config, dict):
            raise ConfigurationError("Datasource settings must be a mapping")
        if SETTINGS_SECTION in config and isinstance(config[SETTINGS_SECTION], dict):
            config = config[SETTINGS_SECTION]

        step_config = config.get('step_defaults') or {}
        try:
            step_defaults = StepDefaults(
                scrape_interval=parse_interval(str(step_config.get('scrape_interval', '15s'))),
                resolution=int(step_config.get('resolution', StepDefaults.resolution)),
                instant_step=parse_interval(str(step_config.get('instant_step', '5m'))),
                rate_scrape_interval=parse_interval(str(step_config.get('rate_scrape_interval', '15s'))),
            )
        except (ValidationError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid step_defaults: {e}") from e

        try:
            timeout = float(config.get('timeout', EXTERNAL_CALL_TIMEOUT))
            max_workers = int(config['max_workers']) if config.get('max_workers') else None
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid timeout or max_workers: {e}") from e

        return cls(
            url=config.get('url', ''),
            http_method=config.get('http_method', DEFAULT_HTTP_METHOD),
            custom_query_parameters=config.get('custom_query_parameters') or '',
            time_interval=config.get('time_interval') or '',
            headers={str(k): str(v) for k, v in (config.get('headers') or {}).items()},
            ssl_verify=config.get('ssl_verify', True),
            timeout=timeout,
            max_workers=max_workers,
            step_defaults=step_defaults,
        )

    @classmethod
    def from_yaml(cls, settings_file_path: str) -> 'DatasourceSettings':
        """Load settings from a YAML file"""
        try:
            if not os.path.exists(settings_file_path):
                raise ConfigurationError(f"Settings file not found: {settings_file_path}")

            with open(settings_file_path, 'r') as f:
                config = yaml.safe_load(f)

            if not config:
                raise ConfigurationError("Settings file is empty or invalid")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in settings file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Error loading settings: {e}") from e

        logger.debug(f"Loaded datasource settings from {settings_file_path}")
        return cls.from_dict(config)
