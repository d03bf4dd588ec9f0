from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict

from omegaconf import OmegaConf

LOGGER = logging.getLogger(__name__)

# config.yml key -> environment variable read by the provider SDK
CREDENTIAL_KEYS: Dict[str, str] = {
    "openai_api": "OPENAI_API_KEY",
    "deepseek_api": "DEEPSEEK_API_KEY",
}


def load_credentials(path: str | Path = "config.yml") -> Dict[str, str]:
    """Export provider keys from ``config.yml`` unless the environment already has them.

    Returns the environment variables that were set by this call.
    """

    path = Path(path)
    if not path.exists():
        LOGGER.debug("No credentials file at %s", path)
        return {}
    config = OmegaConf.load(path)
    exported: Dict[str, str] = {}
    for key, env_var in CREDENTIAL_KEYS.items():
        value = OmegaConf.select(config, key)
        if value and not os.environ.get(env_var):
            os.environ[env_var] = str(value)
            exported[env_var] = key
    if exported:
        LOGGER.info("Loaded credentials for %s from %s", ", ".join(sorted(exported)), path)
    return exported
