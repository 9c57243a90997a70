"""Errors raised while loading or reading tunables."""


class ConfigError(Exception):
    pass


class ConfigValidationError(ConfigError):
    """A tunable exists but has the wrong type (e.g. a string where an int is expected)."""


class ConfigInitializationError(ConfigError):
    """A YAML file under the config directory could not be read or parsed."""


__all__ = ["ConfigError", "ConfigValidationError", "ConfigInitializationError"]
