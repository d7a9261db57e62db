"""CLIConfig: Command-line operational overrides.

Minimal configuration for operational parameters that commonly change
between runs: data location, bind address, verbosity.

This schema handles command-line arguments parsed by argparse.
"""

from typing import Literal, Optional
from coralstats.schemas.base import CoralBaseModel


class CLIConfig(CoralBaseModel):
    """Command-line configuration overrides.

    Operational-only settings that override user and param configs.
    Highest priority in config resolution.

    Usage
    -----
        cli_cfg = CLIConfig(data_dir="/srv/coral/data", port=8080)
        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    data_dir: Optional[str] = None
    use_mock_data: Optional[bool] = None
    host: Optional[str] = None
    port: Optional[int] = None
    log_level: Optional[Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]] = None
    log_file: Optional[str] = None

    def to_internal_overrides(self) -> dict:
        """Convert CLI config to internal config structure.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides = {}

        data = {}
        if self.data_dir is not None:
            data["data_dir"] = str(self.data_dir)
        if self.use_mock_data is not None:
            data["use_mock_data"] = self.use_mock_data
        if data:
            overrides["data"] = data

        server = {}
        if self.host is not None:
            server["host"] = self.host
        if self.port is not None:
            server["port"] = self.port
        if server:
            overrides["server"] = server

        logging_overrides = {}
        if self.log_level is not None:
            logging_overrides["level"] = self.log_level
        if self.log_file is not None:
            logging_overrides["log_file"] = self.log_file
        if logging_overrides:
            overrides["logging"] = logging_overrides

        return overrides
