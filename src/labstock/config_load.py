import os
from functools import lru_cache

from labstock.common.utils.config_loader import ConfigLoader, find_project_root
from labstock.config_schema import Settings

CONFIG_ENV_VAR = "LABSTOCK_CONFIG"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Loads and caches project settings from config/*.yaml."""
    env = os.getenv("ENV")  # dev/prod/local or None
    return ConfigLoader(project_root=find_project_root(__file__)).load(
        schema=Settings,
        env=env if env in {"dev", "prod"} else None,
        config_env_var=CONFIG_ENV_VAR,
    )
