# Configuration settings should be set in app.config
# The class attributes of dynarest.Dynarest hold the defaults, environment variables override those defaults
import os
import logging
from flask import current_app
import dynarest
from typing import Any


def _from_env(option: str, default: Any) -> Any:
    """
    Read `option` from the environment, converted to the type of the default value
    """
    value = os.environ.get(option, None)
    if value is None:
        return default
    if isinstance(default, bool):
        return value.lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        try:
            return int(value)
        except ValueError:
            dynarest.log.warning(f'Invalid integer for {option} in environment: "{value}"')
            return default
    if isinstance(default, (dict, list)):
        # structured options can only be set in app.config
        return default
    return value


def get_config(option: str) -> Any:
    """Retrieve a configuration parameter
    lookup order: app.config, environment, dynarest.Dynarest class attribute
    :param option: configuration parameter
    :return: configuration value
    """
    try:
        return current_app.config[option]
    except (KeyError, RuntimeError):
        # RuntimeError: working outside of an application context
        pass
    return _from_env(option, getattr(dynarest.Dynarest, option, None))


def is_debug() -> bool:
    """
    We use the loglevel to check whether we're running in debug mode
    :return: whether the app is in debug mode
    """
    return dynarest.log.getEffectiveLevel() < logging.INFO
