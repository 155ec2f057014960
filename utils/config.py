"""
Configuration management for the portfolio analysis engine.
Environment detection and .env loading shared by the CLI and the analysis service.
"""

import os
import sys
from pathlib import Path
from typing import Optional

import dotenv

ENV_VAR = 'PORTFOLIO_ANALYSIS_ENV'
VALID_ENVIRONMENTS = {'development', 'testing', 'production'}


class Config:
    """Centralized configuration management."""

    _environment: Optional[str] = None
    _env_loaded: bool = False

    @classmethod
    def _load_env_file(cls) -> None:
        """Load environment-specific .env file if it exists."""
        if cls._env_loaded:
            return

        env = cls._get_environment_no_load()
        root = cls.get_project_root()
        env_file = root / f'.env.{env}'

        if env_file.exists():
            dotenv.load_dotenv(env_file, override=True)
        else:
            # Only load default .env if no environment-specific file exists
            default_env_file = root / '.env'
            if default_env_file.exists():
                dotenv.load_dotenv(default_env_file, override=False)

        cls._env_loaded = True

    @classmethod
    def _get_environment_no_load(cls) -> str:
        """Get environment without loading .env files (to avoid recursion)."""
        env = os.environ.get(ENV_VAR, '').strip().lower()

        if not env:
            if os.environ.get('PYTEST_CURRENT_TEST') or 'pytest' in sys.argv[0]:
                env = 'testing'

        return env or 'development'

    @classmethod
    def get_environment(cls) -> str:
        """Get the current environment with proper priority order."""
        if cls._environment is not None:
            return cls._environment

        cls._load_env_file()
        env = cls._get_environment_no_load()

        if env not in VALID_ENVIRONMENTS:
            raise ValueError(f"Invalid environment '{env}'. Must be one of: {VALID_ENVIRONMENTS}")

        cls._environment = env
        return env

    @classmethod
    def set_environment(cls, env: str) -> None:
        """Override the environment (useful for testing)."""
        if env not in VALID_ENVIRONMENTS:
            raise ValueError(f"Invalid environment '{env}'. Must be one of: {VALID_ENVIRONMENTS}")
        cls._environment = env

    @classmethod
    def reset(cls) -> None:
        """Forget cached environment and .env state."""
        cls._environment = None
        cls._env_loaded = False

    @classmethod
    def is_testing(cls) -> bool:
        return cls.get_environment() == 'testing'

    @classmethod
    def is_production(cls) -> bool:
        return cls.get_environment() == 'production'

    @classmethod
    def get_env_var(cls, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get environment variable with automatic .env file loading."""
        cls._load_env_file()
        return os.environ.get(key, default)

    @classmethod
    def get_database_path(cls) -> str:
        """Get database path for current environment."""
        db_path = cls.get_env_var('DATABASE_PATH')
        if db_path:
            path = Path(db_path)
            if not path.is_absolute():
                path = cls.get_project_root() / path
            return str(path)

        db_names = {
            'development': 'portfolio_analysis.db',
            'testing': 'test_portfolio_analysis.db',
            'production': 'portfolio_analysis.db'
        }
        return str(cls.get_project_root() / db_names[cls.get_environment()])

    @classmethod
    def get_log_level(cls) -> str:
        return (cls.get_env_var('LOG_LEVEL') or 'INFO').upper()

    @classmethod
    def get_project_root(cls) -> Path:
        """Get project root directory."""
        return Path(__file__).resolve().parent.parent


# Global instance for easy access
config = Config()
