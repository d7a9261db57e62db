"""API server execution logic.

This module contains the actual server runner, separated from argument
parsing. ``scripts/run_server.py`` and the ``coralstats-serve`` console
script are thin wrappers around ``main()``.
"""

import argparse
import importlib.util
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from coralstats.api import CoralQueryService, create_app
from coralstats.core.repository import ObservationRepository
from coralstats.schemas import CLIConfig, InternalConfig, ParamConfig, UserConfig, resolve_config


logger = logging.getLogger(__name__)


def load_user_config_dict(config_path: str) -> dict:
    """Load user config dict from Python file.

    Returns the raw dict before Pydantic validation.

    Parameters
    ----------
    config_path : str
        Path to user config Python file containing CONFIG dict.

    Returns
    -------
    dict
        Raw user configuration dictionary.

    Raises
    ------
    FileNotFoundError
        If config file does not exist.
    ValueError
        If no CONFIG dict found in file.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    module_spec = importlib.util.spec_from_file_location("config_module", path)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)

    for name in dir(module):
        if name.startswith('CONFIG'):
            obj = getattr(module, name)
            if isinstance(obj, dict):
                return obj

    raise ValueError(f"No CONFIG dict found in {path}")


def setup_logging(config: InternalConfig) -> None:
    """Configure the root logger with console and optional file handlers."""
    log_level = getattr(logging, config.logging.level, logging.INFO)

    formatter = logging.Formatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root = logging.getLogger()
    root.setLevel(log_level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    ch = logging.StreamHandler()
    ch.setLevel(log_level)
    ch.setFormatter(formatter)
    root.addHandler(ch)

    if config.logging.log_file:
        log_path = Path(config.logging.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_path)
        fh.setLevel(log_level)
        fh.setFormatter(formatter)
        root.addHandler(fh)

    logger.info("Logging: level=%s, file=%s", config.logging.level, config.logging.log_file)


def build_config(user_config_path: Optional[str] = None,
                 cli_args: Optional[Dict[str, Any]] = None) -> InternalConfig:
    """Resolve configuration (Param < User < CLI)."""
    param_cfg = ParamConfig()

    user_cfg = None
    if user_config_path is not None:
        user_cfg = UserConfig.model_validate(load_user_config_dict(user_config_path))

    cli_dict = {k: v for k, v in (cli_args or {}).items() if v is not None}
    cli_cfg = CLIConfig.model_validate(cli_dict) if cli_dict else CLIConfig()

    return resolve_config(param_cfg, user_cfg, cli_cfg)


def build_app(config: InternalConfig):
    """Load the repository once and bind it to a new FastAPI app."""
    repository = ObservationRepository.from_config(config.data)
    if repository.using_mock_data:
        logger.warning("=" * 60)
        logger.warning("RUNNING WITH MOCK DATA - NOT FOR PRODUCTION USE")
        logger.warning("=" * 60)
    return create_app(CoralQueryService(repository, config))


def run_server(
    user_config_path: Optional[str] = None,
    cli_args: Optional[Dict[str, Any]] = None,
    verbose: bool = False,
) -> None:
    """Resolve config, load data and serve the API until interrupted.

    Parameters
    ----------
    user_config_path : str, optional
        Path to user config file (Python file with CONFIG dict).
    cli_args : dict, optional
        CLI overrides. Keys: data_dir, use_mock_data, host, port,
        log_level, log_file. All optional.
    verbose : bool, optional
        If True, enable DEBUG logging and print full resolved config.

    Raises
    ------
    DataUnavailable
        If no data directory is configured and mock data is disabled.
    """
    import uvicorn

    cli_args = dict(cli_args or {})
    if verbose and cli_args.get("log_level") is None:
        cli_args["log_level"] = "DEBUG"
    config = build_config(user_config_path, cli_args)
    setup_logging(config)

    print(f"\n{'='*60}")
    print("CoralStats API")
    print('='*60)
    print(f"Config: {user_config_path or '(defaults)'}")
    print(f"Data:   {'MOCK' if config.data.use_mock_data else config.data.data_dir}")
    print(f"Listen: http://{config.server.host}:{config.server.port}{config.server.api_prefix}")
    print('='*60)

    if verbose:
        print("\nFull Internal Configuration:")
        print(json.dumps(config.model_dump(), indent=2, default=str))
        print('='*60)

    app = build_app(config)
    uvicorn.run(app, host=config.server.host, port=config.server.port,
                log_level=config.logging.level.lower(), log_config=None)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Serve the CoralStats demographic API")
    parser.add_argument("config", nargs="?", help="Path to user config file")
    parser.add_argument("--data-dir", help="Directory with the standardized CSV tables")
    parser.add_argument("--mock", action="store_true", help="Serve seeded synthetic data")
    parser.add_argument("--host", help="Bind address")
    parser.add_argument("--port", type=int, help="Bind port")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    run_server(
        args.config,
        cli_args={
            "data_dir": args.data_dir,
            "use_mock_data": True if args.mock else None,
            "host": args.host,
            "port": args.port,
            "log_level": args.log_level,
            "log_file": args.log_file,
        },
        verbose=args.verbose,
    )


if __name__ == "__main__":
    main()
