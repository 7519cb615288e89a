import os
import json
from typing import Dict, Any, Optional
from pathlib import Path

from dotenv import dotenv_values


DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_HTTP_TIMEOUT = 10.0


class ConfigError(Exception):
    """Configuration error."""
    pass


class SettingsManager:
    """Manages backend connection settings and the stored API token.

    Lookup order for every setting: process environment, then the ``.env``
    file in the config directory, then the built-in default.
    """

    def __init__(self, config_dir: Optional[str] = None):
        self.config_dir = Path(config_dir) if config_dir else Path.home() / '.radiodesk'
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.tokens_file = self.config_dir / 'tokens.json'
        self.env_file = self.config_dir / '.env'

    def load_tokens(self) -> Dict[str, Any]:
        """Load tokens from tokens.json file."""
        if not self.tokens_file.exists():
            return {}

        try:
            with open(self.tokens_file, 'r') as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise ConfigError(f"Failed to load tokens from {self.tokens_file}: {e}")

    def save_tokens(self, tokens: Dict[str, Any]) -> None:
        """Merge tokens into tokens.json."""
        existing_tokens = self.load_tokens()
        existing_tokens.update(tokens)

        try:
            with open(self.tokens_file, 'w') as f:
                json.dump(existing_tokens, f, indent=2, ensure_ascii=False)
        except (IOError, TypeError) as e:
            raise ConfigError(f"Failed to save tokens to {self.tokens_file}: {e}")

    def get_api_token(self) -> Optional[str]:
        """API bearer token from the environment or tokens.json."""
        token = self._lookup('RADIODESK_API_TOKEN')
        if token:
            return token
        return self.load_tokens().get('api', {}).get('token')

    def save_api_token(self, token: str) -> None:
        self.save_tokens({'api': {'token': token}})

    def load_env_vars(self) -> Dict[str, str]:
        """Load variables from the config directory .env file."""
        if not self.env_file.exists():
            return {}
        try:
            return {k: v for k, v in dotenv_values(self.env_file).items() if v is not None}
        except (IOError, UnicodeDecodeError) as e:
            raise ConfigError(f"Failed to load .env file {self.env_file}: {e}")

    def save_env_vars(self, env_vars: Dict[str, str]) -> None:
        """Save variables to the config directory .env file."""
        try:
            with open(self.env_file, 'w') as f:
                for key, value in env_vars.items():
                    f.write(f"{key}={value}\n")
        except IOError as e:
            raise ConfigError(f"Failed to save .env file {self.env_file}: {e}")

    def _lookup(self, name: str) -> Optional[str]:
        value = os.getenv(name)
        if value is not None and value.strip():
            return value.strip()
        value = self.load_env_vars().get(name)
        if value is not None and value.strip():
            return value.strip()
        return None

    def _positive_float(self, name: str, default: float) -> float:
        raw = self._lookup(name)
        if raw is None:
            return default
        try:
            value = float(raw)
        except ValueError:
            raise ConfigError(f"{name} must be a number, got {raw!r}")
        if value <= 0:
            raise ConfigError(f"{name} must be positive, got {raw!r}")
        return value

    def get_api_url(self) -> str:
        base_url = self._lookup('RADIODESK_API_URL')
        if not base_url:
            raise ConfigError("RADIODESK_API_URL not found in environment")
        return base_url.rstrip('/')

    def get_poll_interval(self) -> float:
        """Seconds between now-playing polls."""
        return self._positive_float('RADIODESK_POLL_INTERVAL', DEFAULT_POLL_INTERVAL)

    def get_http_timeout(self) -> float:
        return self._positive_float('RADIODESK_HTTP_TIMEOUT', DEFAULT_HTTP_TIMEOUT)

    def get_api_config(self) -> Dict[str, Any]:
        """Keyword arguments for ``RadioApiClient``."""
        return {
            'base_url': self.get_api_url(),
            'token': self.get_api_token(),
            'timeout': self.get_http_timeout(),
        }

    def validate_configuration(self) -> Dict[str, bool]:
        """Report which settings are present and well formed."""
        validation = {
            'api_url': bool(self._lookup('RADIODESK_API_URL')),
            'api_token': bool(self.get_api_token()),
            'poll_interval': True,
            'http_timeout': True,
        }
        try:
            self.get_poll_interval()
        except ConfigError:
            validation['poll_interval'] = False
        try:
            self.get_http_timeout()
        except ConfigError:
            validation['http_timeout'] = False
        return validation

    def get_config_summary(self) -> Dict[str, Any]:
        """Configuration summary without sensitive data."""
        validation = self.validate_configuration()

        return {
            'config_dir': str(self.config_dir),
            'tokens_file': str(self.tokens_file),
            'env_file': str(self.env_file),
            'api_url': self._lookup('RADIODESK_API_URL'),
            'validation': validation,
            'has_api_token': validation['api_token'],
        }

    def clear_tokens(self) -> None:
        """Clear all stored tokens."""
        if self.tokens_file.exists():
            self.tokens_file.unlink()

    def clear_env_vars(self) -> None:
        """Clear .env file."""
        if self.env_file.exists():
            self.env_file.unlink()


# Global instance, created on first use
settings_manager: Optional[SettingsManager] = None


def get_settings_manager() -> SettingsManager:
    """Get global settings manager instance."""
    global settings_manager
    if settings_manager is None:
        settings_manager = SettingsManager(os.getenv('RADIODESK_CONFIG_DIR'))
    return settings_manager


def setup_config(config_dir: Optional[str] = None) -> SettingsManager:
    """Setup configuration with custom directory."""
    global settings_manager
    settings_manager = SettingsManager(config_dir)
    return settings_manager
