"""
A file that stores general functionality for setting up a phylotrait
analysis: parsing an analysis configuration and configuring logging.
"""
import ast
import configparser
import logging
import os
from typing import Any, Dict, Optional

from phylotrait import constants
from phylotrait.mixins import ConfigError, logger


def setup_logging(
    output_directory: Optional[str] = None, log_level: str = "INFO"
) -> None:
    """Setup logging for an analysis.

    Args:
        output_directory: Where to write `phylotrait.log`. The directory is
            created if it does not exist. Logs go to stderr if None.
        log_level: Name of the logging level.

    Raises:
        ConfigError if the logging level is unknown.
    """
    if log_level not in constants.LOG_LEVELS:
        raise ConfigError(
            f"Unknown log level {log_level}. Choose one of "
            f"{constants.LOG_LEVELS}.",
            component="setup_logging",
            parameter="log_level",
        )

    if output_directory is not None:
        os.makedirs(output_directory, exist_ok=True)
        logging.basicConfig(
            filename=os.path.join(output_directory, "phylotrait.log"),
            level=getattr(logging, log_level),
        )
    else:
        logging.basicConfig(level=getattr(logging, log_level))
    logger.setLevel(getattr(logging, log_level))


def parse_config(config_string: str) -> Dict[str, Dict[str, Any]]:
    """Parse config for an analysis.

    Values are Python literals (strings must be quoted), as in

        [continuous]
        models = ["BM", "OU"]

    Args:
        config_string: Configuration file rendered as a string.

    Returns:
        A dictionary mapping parameters for each analysis stage, with the
        defaults of `constants.DEFAULT_ANALYSIS_PARAMETERS` filled in.

    Raises:
        ConfigError if the configuration can not be read, names an unknown
            section or parameter, or holds a value that is not a literal.
    """
    config = configparser.ConfigParser()

    # load in defaults
    config.read_dict(
        {
            section: {k: repr(v) for k, v in values.items()}
            for section, values in constants.DEFAULT_ANALYSIS_PARAMETERS.items()
        }
    )

    try:
        config.read_string(config_string)
    except configparser.Error as error:
        raise ConfigError(
            f"Could not read configuration: {error}", component="parse_config"
        )

    parameters = {}
    for section in config.sections():
        if section not in constants.DEFAULT_ANALYSIS_PARAMETERS:
            raise ConfigError(
                f"Unknown configuration section [{section}].",
                component="parse_config",
                parameter=section,
            )
        defaults = constants.DEFAULT_ANALYSIS_PARAMETERS[section]
        parameters[section] = {}
        for key, value in config[section].items():
            if key not in defaults:
                raise ConfigError(
                    f"Unknown parameter {key} in section [{section}].",
                    component="parse_config",
                    parameter=key,
                )
            try:
                parameters[section][key] = ast.literal_eval(value)
            except (ValueError, SyntaxError):
                raise ConfigError(
                    f"Could not parse value {value} of {section}.{key}; "
                    "quote strings.",
                    component="parse_config",
                    parameter=key,
                )

    threads = parameters["general"]["threads"]
    if not isinstance(threads, int) or threads < 1:
        raise ConfigError(
            f"threads must be a positive integer, got {threads}.",
            component="parse_config",
            parameter="threads",
        )
    if parameters["general"]["log_level"] not in constants.LOG_LEVELS:
        raise ConfigError(
            f"Unknown log level {parameters['general']['log_level']}.",
            component="parse_config",
            parameter="log_level",
        )

    return parameters
