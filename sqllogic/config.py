"""
Configuration management for the SQL logic test runner
"""

import json
from dataclasses import dataclass, asdict
from typing import Dict, Any, List, Optional

from .errors import ConfigError

PROTOCOLS = ("mysql", "http", "clickhouse")
PARSE_ERROR_POLICIES = ("skip-file", "abort")


@dataclass
class BackendConfig:
    """Backend connection data class"""
    name: str
    protocol: str
    host: str
    port: int
    username: str = "root"
    password: str = ""
    database: str = "default"


@dataclass
class TestSettings:
    """Run-wide settings"""
    __test__ = False

    timeout_seconds: float = 30
    max_failures_reported: int = 10
    parse_error_policy: str = "skip-file"
    parallel_backends: bool = True


DEFAULT_CONFIG: Dict[str, Any] = {
    'backends': {
        'mysql': {
            'protocol': 'mysql',
            'host': '127.0.0.1',
            'port': 3307,
            'username': 'root',
            'password': '',
            'database': 'default'
        },
        'http': {
            'protocol': 'http',
            'host': '127.0.0.1',
            'port': 8000,
            'username': 'root',
            'password': '',
            'database': 'default'
        }
    },
    'test_settings': {
        'timeout_seconds': 30,
        'max_failures_reported': 10,
        'parse_error_policy': 'skip-file',
        'parallel_backends': True
    },
    'skip_files': []
}


class Config:
    """Configuration manager"""

    def __init__(self, config_path: Optional[str] = "config.json", data: Optional[Dict[str, Any]] = None):
        self.config_path = config_path
        if data is None:
            data = self._load_config()
        self._apply(data)

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file, writing the defaults when it does not exist"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError:
            config_data = json.loads(json.dumps(DEFAULT_CONFIG))
            self._save_config(config_data)
            return config_data
        except json.JSONDecodeError as e:
            raise ConfigError(f"{self.config_path} is not valid JSON: {e}")

    def _apply(self, config_data: Dict[str, Any]):
        issues = ConfigValidator.validate_config(config_data)
        if issues:
            raise ConfigError("; ".join(issues))

        self.backends: Dict[str, BackendConfig] = {
            name: BackendConfig(name=name, **values)
            for name, values in config_data['backends'].items()
        }
        self.test_settings = TestSettings(**config_data.get('test_settings', {}))
        self.skip_files: List[str] = list(config_data.get('skip_files', []))

    def _save_config(self, config_data: Dict[str, Any]):
        """Save configuration to file"""
        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(config_data, f, indent=2, ensure_ascii=False)

    def select_backends(self, names: List[str]):
        """Restrict the run to the given backend labels"""
        unknown = [name for name in names if name not in self.backends]
        if unknown:
            raise ConfigError(f"Unknown backend(s): {', '.join(unknown)}")
        self.backends = {name: self.backends[name] for name in names}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'backends': {
                name: {k: v for k, v in asdict(backend).items() if k != 'name'}
                for name, backend in self.backends.items()
            },
            'test_settings': asdict(self.test_settings),
            'skip_files': list(self.skip_files)
        }


class ConfigValidator:
    """Validate configuration data"""

    @staticmethod
    def validate_config(config_data: Dict[str, Any]) -> List[str]:
        """Validate configuration data and return list of issues"""
        issues = []

        backends = config_data.get('backends')
        if not isinstance(backends, dict) or not backends:
            issues.append("Missing backends configuration")
            backends = {}

        known_fields = set(BackendConfig.__dataclass_fields__) - {'name'}
        for name, backend in backends.items():
            if not isinstance(backend, dict):
                issues.append(f"Backend {name} must be an object")
                continue

            unknown = sorted(set(backend) - known_fields)
            if unknown:
                issues.append(f"Unknown field(s) for {name}: {', '.join(unknown)}")

            if backend.get('protocol') not in PROTOCOLS:
                issues.append(f"Unknown protocol for {name}: {backend.get('protocol')!r}")

            if 'host' not in backend or not backend['host']:
                issues.append(f"Missing or empty host for {name}")

            port = backend.get('port')
            if not isinstance(port, int) or isinstance(port, bool):
                issues.append(f"Missing or invalid port for {name}")
            elif not (1 <= port <= 65535):
                issues.append(f"Invalid port range for {name}: {port}")

        test_settings = config_data.get('test_settings', {})
        if not isinstance(test_settings, dict):
            issues.append("test_settings must be an object")
            test_settings = {}

        unknown = sorted(set(test_settings) - set(TestSettings.__dataclass_fields__))
        if unknown:
            issues.append(f"Unknown test_settings field(s): {', '.join(unknown)}")

        if 'timeout_seconds' in test_settings:
            timeout = test_settings['timeout_seconds']
            if not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout <= 0:
                issues.append("Invalid timeout_seconds in test_settings")

        if 'max_failures_reported' in test_settings:
            limit = test_settings['max_failures_reported']
            if not isinstance(limit, int) or isinstance(limit, bool) or limit < 0:
                issues.append("Invalid max_failures_reported in test_settings")

        if 'parallel_backends' in test_settings and not isinstance(test_settings['parallel_backends'], bool):
            issues.append("Invalid parallel_backends in test_settings")

        if test_settings.get('parse_error_policy', 'skip-file') not in PARSE_ERROR_POLICIES:
            issues.append(f"Invalid parse_error_policy: {test_settings['parse_error_policy']!r}")

        skip_files = config_data.get('skip_files', [])
        if not isinstance(skip_files, list) or not all(isinstance(s, str) for s in skip_files):
            issues.append("skip_files must be a list of strings")

        return issues
