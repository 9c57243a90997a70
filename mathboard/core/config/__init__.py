"""
Configuration subsystem for Mathboard.

Static vs Tunable Configuration
-------------------------------
**Static (Config):**
- Loaded from environment variables at startup (python-dotenv)
- Includes: database/Redis URLs, pool sizes, timeouts, scheduler timezone
- Changes require a restart

**Tunable (ConfigManager, `mathboard.core.config.manager`):**
- Loaded from YAML files in `config/`
- Includes: reward table, snapshot limit, cron expression, per-partition timeouts
- Dot-notation reads, in-process overrides

ConfigManager is imported from its own module because it logs through
`mathboard.core.logging`, which itself reads `Config`.
"""

from mathboard.core.config.config import Config, Environment
from mathboard.core.config.errors import (
    ConfigError,
    ConfigInitializationError,
    ConfigValidationError,
)

__all__ = [
    "Config",
    "Environment",
    "ConfigError",
    "ConfigInitializationError",
    "ConfigValidationError",
]
