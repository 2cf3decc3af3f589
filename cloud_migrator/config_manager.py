"""Manages loading, updating, and validating the application's configuration.

This module is responsible for handling the `config.ini` file. It includes
functionality to:
- Create a new configuration file from a template if one doesn't exist.
- Update an existing configuration file with new options from the template
  while preserving user-defined values.
- Load the configuration into a `ConfigParser` object for use by the application.
- Validate the configuration to ensure all required options are present and
  have valid values.
"""
import configparser
import logging
import shutil
import sys
import time
from pathlib import Path
from typing import List

import configupdater

from .utils import Defaults

DEFAULT_SETTINGS = {
    'parallel_jobs': str(Defaults.PARALLEL_JOBS),
    'traversal_workers': str(Defaults.TRAVERSAL_WORKERS),
    'max_fetch_attempts': str(Defaults.MAX_FETCH_ATTEMPTS),
    'retry_delay_seconds': str(Defaults.RETRY_DELAY_SECONDS),
    'chunk_size': str(Defaults.CHUNK_SIZE),
    'follow_symlinks': 'true',
    'log_dir': 'logs',
}


def _comment_lines_above(option: configupdater.Option) -> List[str]:
    """Returns the comment lines directly above ``option`` in its section."""
    lines: List[str] = []
    block = option.previous_block
    while isinstance(block, configupdater.Comment):
        lines[:0] = [line.rstrip('\n') for line in block.lines]
        block = block.previous_block
    return lines


def update_config(config_path: str, template_path: str) -> None:
    """Updates an existing config.ini from a template, preserving user values.

    New sections and options present in the template are added to the user's
    file, together with the comment lines that precede them in the template.
    Existing values and comments are kept. If the file is modified, a
    timestamped backup of the original is written to a `backup` subdirectory
    first. If no configuration file exists at `config_path`, one is created
    from the template.

    Args:
        config_path: The path to the user's configuration file (e.g., 'config.ini').
        template_path: The path to the template file (e.g., 'config.ini.template').

    Raises:
        SystemExit: If the template file cannot be found or a new config cannot be created.
    """
    config_file = Path(config_path)
    template_file = Path(template_path)
    logging.info("STATE: Checking for configuration updates...")

    if not template_file.is_file():
        logging.error(f"FATAL: Config template '{template_path}' not found.")
        sys.exit(1)

    if not config_file.is_file():
        logging.warning(f"Configuration file not found at '{config_path}'.")
        logging.warning("Creating a new one from the template with default settings.")
        try:
            config_file.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(template_file, config_file)
        except OSError as e:
            logging.error(f"FATAL: Could not create config file: {e}")
            sys.exit(1)
        return

    try:
        updater = configupdater.ConfigUpdater()
        updater.read(config_file, encoding='utf-8')
        template_updater = configupdater.ConfigUpdater()
        template_updater.read(template_file, encoding='utf-8')

        changes_made = False
        for section_name in template_updater.sections():
            template_section = template_updater[section_name]
            if not updater.has_section(section_name):
                updater.add_section(section_name)
                changes_made = True
                logging.info(f"CONFIG: Added new section to config: [{section_name}]")
            user_section = updater[section_name]
            for key, opt in template_section.items():
                if user_section.has_option(key):
                    continue
                user_section.set(key, opt.value)
                comments = _comment_lines_above(opt)
                if comments:
                    builder = user_section[key].add_before.space()
                    for line in comments:
                        builder.comment(line)
                changes_made = True
                logging.info(f"CONFIG: Added new option in [{section_name}]: {key}")

        if changes_made:
            backup_dir = config_file.parent / 'backup'
            backup_dir.mkdir(exist_ok=True)
            backup_path = backup_dir / f"{config_file.stem}.bak_{time.strftime('%Y%m%d-%H%M%S')}"
            shutil.copy2(config_file, backup_path)
            logging.info(f"CONFIG: Backed up existing configuration to '{backup_path}'")
            with config_file.open('w', encoding='utf-8') as f:
                updater.write(f)
            logging.info("CONFIG: Configuration file has been updated with new options.")
        else:
            logging.info("CONFIG: Configuration file is already up-to-date.")
    except Exception as e:
        logging.error(f"FATAL: An error occurred during config update: {e}", exc_info=True)
        sys.exit(1)


def load_config(config_path: str = "config.ini") -> configparser.ConfigParser:
    """Loads the configuration from the specified .ini file.

    Built-in defaults fill the ``[SETTINGS]`` section, so a missing file or a
    missing option falls back to them.

    Args:
        config_path: The path to the configuration file.

    Returns:
        A `ConfigParser` object loaded with the configuration settings.
    """
    config = configparser.ConfigParser()
    config.read_dict({'SETTINGS': DEFAULT_SETTINGS})
    config_file = Path(config_path)
    if config_file.is_file():
        config.read(config_file, encoding='utf-8')
    else:
        logging.warning(f"Configuration file not found at '{config_path}', using built-in defaults.")
    return config


class ConfigValidator:
    """Validates the structure and values of the application's configuration.

    Attributes:
        config (configparser.ConfigParser): The configuration object to validate.
        errors (List[str]): Critical problems. If this list is not empty after
            validation, the configuration is considered invalid.
        warnings (List[str]): Non-critical problems that do not invalidate the
            configuration.
    """

    REQUIRED_SECTIONS = {
        'SETTINGS': ['parallel_jobs', 'traversal_workers', 'max_fetch_attempts',
                     'retry_delay_seconds', 'chunk_size', 'follow_symlinks'],
    }

    POSITIVE_INTEGERS = ['parallel_jobs', 'traversal_workers', 'max_fetch_attempts', 'chunk_size']

    def __init__(self, config: configparser.ConfigParser):
        self.config = config
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate(self) -> bool:
        """Runs all validation checks and prints resulting errors or warnings.

        Returns:
            `True` if the configuration is valid (no errors), `False` otherwise.
        """
        self._check_required_sections()
        self._check_required_options()
        if not self.errors:
            self._check_numeric_values()
            self._check_boolean_values()

        if self.errors:
            print("Configuration errors found:", file=sys.stderr)
            for error in self.errors:
                print(f" ❌ {error}", file=sys.stderr)
            return False

        if self.warnings:
            print("Configuration warnings:", file=sys.stderr)
            for warning in self.warnings:
                print(f" ⚠️ {warning}", file=sys.stderr)

        return True

    def _check_required_sections(self) -> None:
        for section in self.REQUIRED_SECTIONS:
            if not self.config.has_section(section):
                self.errors.append(f"Missing required section: [{section}]")

    def _check_required_options(self) -> None:
        for section, options in self.REQUIRED_SECTIONS.items():
            if not self.config.has_section(section):
                continue
            for option in options:
                if not self.config.has_option(section, option) or not self.config[section][option].strip():
                    self.errors.append(f"Missing required option '{option}' in [{section}]")

    def _check_numeric_values(self) -> None:
        settings = self.config['SETTINGS']
        for option in self.POSITIVE_INTEGERS:
            try:
                value = settings.getint(option)
            except ValueError:
                self.errors.append(f"[SETTINGS] {option} must be an integer, got '{settings[option]}'")
                continue
            if value < 1:
                self.errors.append(f"[SETTINGS] {option} must be at least 1, got {value}")

        try:
            delay = settings.getfloat('retry_delay_seconds')
        except ValueError:
            self.errors.append(f"[SETTINGS] retry_delay_seconds must be a number, got '{settings['retry_delay_seconds']}'")
        else:
            if delay < 0:
                self.errors.append(f"[SETTINGS] retry_delay_seconds cannot be negative, got {delay}")

        if not self.errors:
            if settings.getint('parallel_jobs') > 64:
                self.warnings.append("[SETTINGS] parallel_jobs above 64 is likely to overload the sync clients.")
            if settings.getint('chunk_size') < 512:
                self.warnings.append("[SETTINGS] chunk_size below 512 bytes makes stub fetching very slow.")

    def _check_boolean_values(self) -> None:
        try:
            self.config['SETTINGS'].getboolean('follow_symlinks')
        except ValueError:
            self.errors.append(f"[SETTINGS] follow_symlinks must be true or false, got '{self.config['SETTINGS']['follow_symlinks']}'")


class ConfigManager:
    """Loads and validates the configuration, exposing typed settings.

    Raises:
        SystemExit: From the constructor, if the configuration is invalid.
    """

    def __init__(self, config_path: str):
        self.config_path = config_path
        self.config = load_config(config_path)
        if not ConfigValidator(self.config).validate():
            logging.error(f"FATAL: Configuration '{config_path}' is invalid.")
            sys.exit(1)
        self.settings = self.config['SETTINGS']

    def get_parallel_jobs(self) -> int:
        return self.settings.getint('parallel_jobs')

    def get_traversal_workers(self) -> int:
        return self.settings.getint('traversal_workers')

    def get_max_fetch_attempts(self) -> int:
        return self.settings.getint('max_fetch_attempts')

    def get_retry_delay(self) -> float:
        return self.settings.getfloat('retry_delay_seconds')

    def get_chunk_size(self) -> int:
        return self.settings.getint('chunk_size')

    def get_follow_symlinks(self) -> bool:
        return self.settings.getboolean('follow_symlinks')

    def get_log_dir(self) -> str:
        return self.settings.get('log_dir', 'logs')
