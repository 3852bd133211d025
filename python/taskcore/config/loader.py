"""Project configuration file discovery.

A project may pin settings in a JSON file at its root. Values from the file
are layered over environment-derived settings; the ``working_directory``
defaults to the directory the file was found in.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from taskcore.config.settings import TaskCoreSettings
from taskcore.exceptions_unified import InvalidConfigurationError, MissingConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAMES = (".taskcore.json", "taskcore.config.json")

PathLike = Union[str, Path]


def find_config_file(working_directory: PathLike) -> Optional[Path]:
    """First known config file name present in ``working_directory``."""
    root = Path(working_directory)
    for name in CONFIG_FILE_NAMES:
        candidate = root / name
        if candidate.is_file():
            return candidate
    return None


def load_config(
    working_directory: PathLike,
    config_path: Optional[PathLike] = None,
    *,
    throw_on_missing: bool = False,
) -> TaskCoreSettings:
    """Load settings for a project directory.

    Raises:
        MissingConfigurationError: no file found and ``throw_on_missing``
        InvalidConfigurationError: unreadable JSON or invalid values
    """
    root = Path(working_directory).resolve()
    path = (root / config_path) if config_path else find_config_file(root)

    if path is None:
        if throw_on_missing:
            raise MissingConfigurationError(
                f"No configuration file found. Create one of: {', '.join(CONFIG_FILE_NAMES)}"
            )
        logger.debug("No config file in %s; using environment defaults", root)
        return TaskCoreSettings(working_directory=str(root), project_name=root.name)

    data = _read_json(path)
    data.setdefault("working_directory", str(root))
    data.setdefault("project_name", root.name)
    try:
        settings = TaskCoreSettings(**data)
    except PydanticValidationError as exc:
        raise InvalidConfigurationError(
            f"Invalid configuration in {path}:\n{_format_errors(exc)}",
            details={"path": str(path)},
        ) from exc
    logger.info("Loaded configuration from %s", path)
    return settings


def validate_config_file(path: PathLike) -> Tuple[bool, List[str]]:
    """Check a config file without raising. Returns ``(valid, errors)``."""
    try:
        data = _read_json(Path(path))
        TaskCoreSettings(**data)
    except InvalidConfigurationError as exc:
        return False, [exc.message]
    except PydanticValidationError as exc:
        return False, _format_errors(exc).splitlines()
    return True, []


def write_config(
    working_directory: PathLike,
    settings: TaskCoreSettings,
    file_name: str = CONFIG_FILE_NAMES[0],
) -> Path:
    """Write the non-secret settings as the project's config file."""
    path = Path(working_directory) / file_name
    payload = settings.model_dump(mode="json", exclude={"anthropic_api_key", "working_directory"})
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    return path


def _read_json(path: Path) -> Dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise InvalidConfigurationError(f"Cannot read {path}: {exc}") from exc
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as exc:
        raise InvalidConfigurationError(f"Invalid JSON in {path}: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise InvalidConfigurationError(f"Configuration in {path} must be a JSON object")
    return parsed


def _format_errors(exc: PydanticValidationError) -> str:
    return "\n".join(
        f"  {'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
