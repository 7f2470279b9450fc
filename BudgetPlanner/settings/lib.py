"""Settings library for the sync configuration.

Provides:
    - Schema validation and enforcement for the sync.json structure.
    - Loading, saving, reverting, and managing application settings.
    - Application paths for the config template and the local database.
"""

import json
import logging
import pathlib
import shutil
from typing import Dict, Any, Optional

from PySide6 import QtCore

from ..status import status

app_name: str = 'BudgetPlanner'

SYNC_SCHEMA: Dict[str, Any] = {
    'server': {
        'type': dict,
        'required': True,
        'item_schema': {
            'api_url': {'type': str, 'required': True},
            'request_timeout': {'type': (int, float), 'required': True, 'min': 0},
        }
    },
    'sync': {
        'type': dict,
        'required': True,
        'item_schema': {
            'interval_ms': {'type': int, 'required': True, 'min': 1},
            'base_delay_ms': {'type': int, 'required': True, 'min': 0},
            'max_delay_ms': {'type': int, 'required': True, 'min': 0},
            'jitter_ms': {'type': int, 'required': True, 'min': 0},
            'max_attempts': {'type': int, 'required': True, 'min': 1},
            'pull_page_limit': {'type': int, 'required': True, 'min': 1},
        }
    },
}


def _validate_section(section_name: str, section: Dict[str, Any], item_schema: Dict[str, Any]) -> None:
    """Validate one section of the sync configuration.

    Args:
        section_name: Name of the section, used in error messages.
        section: The section data.
        item_schema: Dict describing required fields, types and lower bounds.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If a required field is missing or below its minimum.
    """
    logging.debug(f'Validating "{section_name}" section.')
    for field, field_specs in item_schema.items():
        if field not in section:
            if field_specs['required']:
                msg: str = f'Section "{section_name}" missing "{field}".'
                logging.error(msg)
                raise ValueError(msg)
            continue

        value = section[field]
        # bool is an int subclass but never a valid number here
        if isinstance(value, bool) or not isinstance(value, field_specs['type']):
            msg = (
                f'Section "{section_name}" field "{field}" must be {field_specs["type"]}, '
                f'got {type(value)}.'
            )
            logging.error(msg)
            raise TypeError(msg)

        if 'min' in field_specs and value < field_specs['min']:
            msg = f'Section "{section_name}" field "{field}" must be >= {field_specs["min"]}, got {value}.'
            logging.error(msg)
            raise ValueError(msg)


class ConfigPaths:
    """Manage application file paths and ensure the default template and directories exist."""

    def __init__(self) -> None:
        QtCore.QCoreApplication.setApplicationName(app_name)
        QtCore.QCoreApplication.setOrganizationName('')
        logging.debug(f'Setting application name: {app_name}')

        p = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppDataLocation)
        app_data_dir = pathlib.Path(p)
        logging.debug(f'Using app data directory: {app_data_dir}')

        self.template_dir: pathlib.Path = pathlib.Path(__file__).parent.parent / 'config'
        self.sync_template: pathlib.Path = self.template_dir / 'sync.json.template'

        self.config_dir: pathlib.Path = app_data_dir / 'config'
        self.db_dir: pathlib.Path = self.config_dir / 'db'

        self.sync_path: pathlib.Path = self.config_dir / 'sync.json'
        self.db_path: pathlib.Path = self.db_dir / 'budget.db'

        self._verify_and_prepare()

    def _verify_and_prepare(self) -> None:
        """Verify the template exists and prepare configuration directories and files.

        Raises:
            FileNotFoundError: If the template directory or file is missing.
        """
        logging.debug(f'Verifying required directories and templates in {self.template_dir}')
        if not self.template_dir.exists():
            msg: str = f'Missing template directory: {self.template_dir}'
            logging.error(msg)
            raise FileNotFoundError(msg)
        if not self.sync_template.exists():
            msg = f'Missing sync template: {self.sync_template}'
            logging.error(msg)
            raise FileNotFoundError(msg)

        if not self.config_dir.exists():
            logging.debug(f'Creating config directory: {self.config_dir}')
            self.config_dir.mkdir(parents=True, exist_ok=True)

        if not self.db_dir.exists():
            logging.debug(f'Creating db directory: {self.db_dir}')
            self.db_dir.mkdir(parents=True, exist_ok=True)

        # Ensure a valid config exists even if we haven't yet set it up
        if not self.sync_path.exists():
            logging.debug(f'Copying default sync config from template to {self.sync_path}')
            shutil.copy(self.sync_template, self.sync_path)

    def revert_sync_to_template(self) -> None:
        """Restore sync.json from the default template file.

        Raises:
            FileNotFoundError: If the sync template file is missing.
        """
        logging.debug(f'Reverting sync config to template: {self.sync_template}')
        if not self.sync_template.exists():
            msg: str = f'Sync template not found: {self.sync_template}'
            logging.error(msg)
            raise FileNotFoundError(msg)
        shutil.copy(self.sync_template, self.sync_path)


class SettingsAPI(ConfigPaths):
    """
    Provides an interface to get/set/revert/save sync.json sections.

    Dictionary-style access reads and writes keys of the ``sync`` section,
    e.g. ``settings['max_attempts']``.
    """

    def __init__(self, sync_path: Optional[str] = None) -> None:
        super().__init__()

        self.sync_path: pathlib.Path = pathlib.Path(sync_path) if sync_path else self.sync_path

        self.sync_data: Dict[str, Any] = {}
        for k in SYNC_SCHEMA.keys():
            self.sync_data[k] = {}

        self.init_data()

    def __getitem__(self, key: str) -> Any:
        """Retrieve a value of the ``sync`` section.

        Raises:
            KeyError: If key is not defined in the schema.
        """
        if key not in SYNC_SCHEMA['sync']['item_schema']:
            raise KeyError(f'Invalid sync key: {key}, must be one of {list(SYNC_SCHEMA["sync"]["item_schema"])}')
        return self.sync_data['sync'].get(key)

    def __setitem__(self, key: str, value: Any) -> None:
        """Assign and persist a value of the ``sync`` section.

        Raises:
            KeyError: If key is not defined in the schema.
            TypeError, ValueError: If the value fails validation.
        """
        if key not in SYNC_SCHEMA['sync']['item_schema']:
            raise KeyError(f'Invalid sync key: {key}, must be one of {list(SYNC_SCHEMA["sync"]["item_schema"])}')

        section = self.get_section('sync')
        section[key] = value
        self.set_section('sync', section)

    @QtCore.Slot()
    def init_data(self) -> None:
        """Reload sync.json and emit a change signal for each section."""
        self.load_sync()

        from ..ui.actions import signals
        for section in SYNC_SCHEMA.keys():
            signals.configSectionChanged.emit(section)

    def load_sync(self) -> Dict[str, Any]:
        """Load sync.json from disk and validate against schema.

        Returns:
            The loaded sync data dictionary.

        Raises:
            status.SyncConfigNotFoundException: If sync.json file is missing.
            status.SyncConfigInvalidException: If JSON parsing or validation fails.
        """
        logging.debug(f'Loading sync config from "{self.sync_path}"')
        if not self.sync_path.exists():
            raise status.SyncConfigNotFoundException

        try:
            with self.sync_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
            self.validate_sync_data(data)
        except status.SyncConfigInvalidException:
            raise
        except (ValueError, TypeError, RuntimeError) as ex:
            raise status.SyncConfigInvalidException(str(ex)) from ex

        self.sync_data = data
        return self.sync_data

    def validate_sync_data(self, data: Optional[Dict[str, Any]] = None) -> None:
        """Validate sync data against the defined SYNC_SCHEMA.

        Args:
            data (dict, optional): Sync data to validate. Defaults to self.sync_data.

        Raises:
            RuntimeError: If data is empty.
            status.SyncConfigInvalidException: If a required section is missing or has the wrong type.
            TypeError, ValueError: If a field fails validation.
        """
        if data is None:
            data = self.sync_data
        if not data:
            raise RuntimeError('Sync data is empty.')

        logging.debug('Validating sync data against schema.')
        for field, specs in SYNC_SCHEMA.items():
            if specs.get('required') and field not in data:
                raise status.SyncConfigInvalidException(f'Missing required field: {field}')

            if field not in data:
                continue

            if not isinstance(data[field], specs['type']):
                raise status.SyncConfigInvalidException(
                    f'Field "{field}" must be {specs["type"]}, got {type(data[field])}.'
                )

            _validate_section(field, data[field], specs['item_schema'])

        if data['sync']['max_delay_ms'] < data['sync']['base_delay_ms']:
            msg: str = 'max_delay_ms must not be smaller than base_delay_ms.'
            logging.error(msg)
            raise ValueError(msg)

        logging.debug('Sync data is valid.')

    def get_section(self, section_name: str) -> Dict[str, Any]:
        """Retrieve a copy of a configuration section.

        Raises:
            KeyError: If section_name is not in sync_data.
        """
        return self.sync_data[section_name].copy()

    def set_section(self, section_name: str, new_data: Dict[str, Any]) -> None:
        """Replace, validate and persist a configuration section.

        The previous section is restored if validation fails.

        Raises:
            ValueError: If section_name is unrecognized or validation fails.
            TypeError: If a field has the wrong type.
        """
        from ..ui.actions import signals

        if section_name not in SYNC_SCHEMA:
            msg: str = f'Unknown section_name for set: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        current_section_data: Dict[str, Any] = self.sync_data.get(section_name, {}).copy()

        self.sync_data[section_name] = new_data
        try:
            self.validate_sync_data()
            self.save_section(section_name)
            signals.configSectionChanged.emit(section_name)
        except (ValueError, TypeError, status.SyncConfigInvalidException) as e:
            logging.error(f'Validation error on set_section("{section_name}"): {e}')
            self.sync_data[section_name] = current_section_data
            raise

    def revert_section(self, section_name: str) -> None:
        """Revert a configuration section to its template default and save.

        Raises:
            ValueError: If section_name is invalid or not present in the template.
        """
        from ..ui.actions import signals

        if section_name not in SYNC_SCHEMA:
            msg: str = f'Unknown section_name for revert: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        with self.sync_template.open('r', encoding='utf-8') as f:
            template_data: Dict[str, Any] = json.load(f)

        if section_name not in template_data:
            msg = f'No template-based revert logic for section "{section_name}".'
            logging.error(msg)
            raise ValueError(msg)

        self.sync_data[section_name] = template_data[section_name]
        self.save_section(section_name)

        signals.configSectionChanged.emit(section_name)

    def save_section(self, section_name: str) -> None:
        """Persist a single configuration section to sync.json.

        Other sections are taken from the file on disk so that concurrent edits are kept.

        Raises:
            ValueError: If section_name is not recognized.
        """
        if section_name not in SYNC_SCHEMA:
            msg: str = f'Unknown section_name for save: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        logging.debug(f'Saving section "{section_name}" to "{self.sync_path}"')
        original_data: Dict[str, Any] = {}
        if self.sync_path.exists():
            with self.sync_path.open('r', encoding='utf-8') as f:
                original_data = json.load(f)

        new_data: Dict[str, Any] = original_data.copy()
        new_data[section_name] = self.sync_data[section_name]

        with self.sync_path.open('w', encoding='utf-8') as f:
            json.dump(new_data, f, indent=4, ensure_ascii=False)


settings: SettingsAPI = SettingsAPI()
