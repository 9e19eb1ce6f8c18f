"""
Project Name: Tinyburn
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Configuration Management Module
"""

import os
import json
import logging
from typing import Optional

HOME_PATH = os.path.join(os.path.expanduser("~"), ".tinyburn")
CONFIG_FILE_DEFAULT = "config.json"
CHIPS_FILE_DEFAULT = "chips.json"

logger = logging.getLogger("Config")


def get_local_chips():
    """
    Loads the local user chip table override file.
    Returns:
        dict or None: The parsed JSON data if the file exists and is valid, otherwise None.
    """
    chips_file = os.path.join(HOME_PATH, CHIPS_FILE_DEFAULT)
    if os.path.exists(chips_file):
        try:
            with open(chips_file, "rt") as file:
                return json.load(file)
        except json.JSONDecodeError:
            logger.error(f"Warning: Chip file {chips_file} is not a valid JSON.")
    return None


class ConfigManager:
    """
    Manages the Tinyburn settings: serial port, baud rate, ISP programmer
    and avrdude locations. Values are kept in a JSON file under the user's
    home directory. It's a singleton per configuration file name.
    """

    _instances = {}
    _initialized_configs = {}

    def __new__(cls, config_filename: Optional[str] = None, *args, **kwargs):
        actual_filename = config_filename or CONFIG_FILE_DEFAULT
        instance_key = os.path.join(HOME_PATH, actual_filename)

        if instance_key not in cls._instances:
            cls._instances[instance_key] = super(ConfigManager, cls).__new__(cls)
        return cls._instances[instance_key]

    def __init__(self, config_filename: Optional[str] = None):
        actual_filename = config_filename or CONFIG_FILE_DEFAULT
        self.home_path = HOME_PATH
        self.config_file_path = os.path.join(HOME_PATH, actual_filename)

        if self.config_file_path in ConfigManager._initialized_configs:
            return

        self._config = {}
        self._load_config()
        ConfigManager._initialized_configs[self.config_file_path] = True
        logger.debug(f"ConfigManager initialized for {self.config_file_path}.")

    def _load_config(self):
        """
        Loads the configuration from the configuration file.
        If the file doesn't exist, an empty configuration is used.
        """
        if os.path.exists(self.config_file_path):
            try:
                with open(self.config_file_path, "r") as file:
                    self._config = json.load(file)
            except json.JSONDecodeError:
                logger.error(
                    f"Error: Configuration file {self.config_file_path} "
                    "is not a valid JSON. Resetting configuration."
                )
                self._config = {}
        else:
            self._config = {}

    def _save_config(self):
        if not os.path.exists(self.home_path):
            try:
                os.makedirs(self.home_path)
            except OSError as e:
                logger.error(
                    f"Error: Unable to create configuration directory {self.home_path}: {e}"
                )
                return
        try:
            with open(self.config_file_path, "w") as f:
                json.dump(self._config, f, indent=4)
        except IOError as e:
            logger.error(
                f"Error: Unable to save configuration to {self.config_file_path}: {e}"
            )

    def get_value(self, key, default=None):
        """
        Retrieves a value from the configuration.
        Args:
            key (str): The configuration key to retrieve.
            default: The default value to return if the key is not found.
        Returns:
            The value associated with the key or the default value.
        """
        return self._config.get(key, default)

    def set_value(self, key, value):
        """
        Sets a value and saves the configuration file. Setting None removes the key.
        """
        if value is None:
            self.remove_key(key)
            return
        self._config[key] = value
        self._save_config()

    def remove_key(self, key):
        if key in self._config:
            del self._config[key]
            self._save_config()

    def list_all(self):
        return self._config.copy()
