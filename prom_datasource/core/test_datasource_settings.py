import os
import tempfile
import unittest
from datetime import timedelta

from prom_datasource.core.datasource_settings import DatasourceSettings
from prom_datasource.exceptions import ConfigurationError

SETTINGS_YAML = """
prometheus:
  url: https://prometheus.example.com/
  http_method: get
  custom_query_parameters: "extra_label=env%3Dprod"
  time_interval: 30s
  headers:
    Authorization: Bearer token
  ssl_verify: "false"
  timeout: 30
  max_workers: 8
  step_defaults:
    scrape_interval: 1m
    resolution: 500
"""


class TestDatasourceSettings(unittest.TestCase):

    def write_settings(self, content):
        handle, path = tempfile.mkstemp(suffix='.yaml')
        with os.fdopen(handle, 'w') as f:
            f.write(content)
        self.addCleanup(os.remove, path)
        return path

    def test_from_yaml(self):
        settings = DatasourceSettings.from_yaml(self.write_settings(SETTINGS_YAML))
        self.assertEqual(settings.url, "https://prometheus.example.com/")
        self.assertEqual(settings.http_method, "GET")
        self.assertEqual(settings.query_params, [("extra_label", "env=prod")])
        self.assertEqual(settings.time_interval, "30s")
        self.assertEqual(settings.headers, {"Authorization": "Bearer token"})
        self.assertFalse(settings.ssl_verify)
        self.assertEqual(settings.timeout, 30.0)
        self.assertEqual(settings.max_workers, 8)
        self.assertEqual(settings.step_defaults.scrape_interval, timedelta(minutes=1))
        self.assertEqual(settings.step_defaults.resolution, 500)
        self.assertEqual(settings.step_defaults.instant_step, timedelta(minutes=5))

    def test_flat_mapping(self):
        settings = DatasourceSettings.from_dict({"url": "http://localhost:9090"})
        self.assertEqual(settings.http_method, "POST")
        self.assertTrue(settings.ssl_verify)
        self.assertIsNone(settings.max_workers)

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError):
            DatasourceSettings.from_yaml("/nonexistent/settings.yaml")

    def test_empty_and_invalid_yaml(self):
        with self.assertRaises(ConfigurationError):
            DatasourceSettings.from_yaml(self.write_settings(""))
        with self.assertRaises(ConfigurationError):
            DatasourceSettings.from_yaml(self.write_settings("prometheus: [unclosed"))

    def test_invalid_values(self):
        for config in ({"url": ""},
                       {"url": "http://localhost:9090", "http_method": "PUT"},
                       {"url": "http://localhost:9090", "time_interval": "soon"},
                       {"url": "http://localhost:9090", "custom_query_parameters": "a=%zz"},
                       {"url": "http://localhost:9090", "timeout": "never"},
                       {"url": "http://localhost:9090", "step_defaults": {"resolution": "high"}}):
            with self.subTest(config=config):
                with self.assertRaises(ConfigurationError):
                    DatasourceSettings.from_dict(config)


if __name__ == '__main__':
    unittest.main()
