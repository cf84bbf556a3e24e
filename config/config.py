import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from utils.utils import recommended_proof_workers

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config.yaml")

HERMEZ_PTAU_MIRRORS = [
    "https://storage.googleapis.com/zkevm/ptau/powersOfTau28_hez_final_{power}.ptau",
    "https://hermez.s3-eu-west-1.amazonaws.com/powersOfTau28_hez_final_{power}.ptau",
]


@dataclass
class ZKConfig:
    circuit_name: str = "vote"
    curve: str = "bn128"
    build_dir: Path = field(default_factory=lambda: Path("build"))
    circuit_dir: Path = field(default_factory=lambda: Path("circuits"))
    node_modules_dir: Path = field(default_factory=lambda: Path("node_modules"))

    ptau_power: int = 12
    ptau_file: Optional[Path] = None
    ptau_urls: List[str] = field(default_factory=lambda: list(HERMEZ_PTAU_MIRRORS))
    ptau_blake2b: Optional[str] = None
    allow_dev_ptau: bool = False

    ceremony_participants: int = 1
    apply_beacon: bool = True
    verify_zkey: bool = True

    proof_timeout: float = 60.0
    max_concurrent_proofs: int = field(default_factory=recommended_proof_workers)
    command_timeout: float = 600.0

    circom_bin: str = "circom"
    snarkjs_bin: str = "snarkjs"
    node_bin: str = "node"

    def __post_init__(self):
        self.build_dir = Path(self.build_dir)
        self.circuit_dir = Path(self.circuit_dir)
        self.node_modules_dir = Path(self.node_modules_dir)
        if self.ptau_file is None:
            self.ptau_file = self.build_dir / "powersoftau.ptau"
        self.ptau_file = Path(self.ptau_file)

        if self.proof_timeout <= 0:
            raise ValueError("proof_timeout must be positive")
        if self.max_concurrent_proofs < 1:
            raise ValueError("max_concurrent_proofs must be at least 1")
        if self.ceremony_participants < 1:
            raise ValueError("ceremony_participants must be at least 1")

    def resolved_ptau_urls(self) -> List[str]:
        return [url.format(power=self.ptau_power) for url in self.ptau_urls]


@dataclass
class LedgerConfig:
    backend: str = "sqlite"
    database_path: Path = field(default_factory=lambda: Path("data/votes.db"))

    def __post_init__(self):
        self.database_path = Path(self.database_path)
        if self.backend not in ("sqlite", "memory"):
            raise ValueError(f"Unknown ledger backend: {self.backend}")


@dataclass
class ApiConfig:
    host: str = "127.0.0.1"
    port: int = 5000
    voter_header: str = "X-Voter-Id"


@dataclass
class SystemConfig:
    zk_config: ZKConfig = field(default_factory=ZKConfig)
    ledger_config: LedgerConfig = field(default_factory=LedgerConfig)
    api_config: ApiConfig = field(default_factory=ApiConfig)
    # raw `elections` entries; parsed by ballots.elections.directory_from_config
    elections: List[Dict[str, Any]] = field(default_factory=list)

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    log_level: str = "INFO"
    enable_debug_mode: bool = False
    metrics_window: int = 10000

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        if not isinstance(self.elections, list):
            raise ValueError("elections must be a list of election entries")
        if self.metrics_window < 1:
            raise ValueError("metrics_window must be at least 1")
        if self.enable_debug_mode:
            self.log_level = "DEBUG"


# ============================================================================
# LOADING
# ============================================================================

# env var -> (section, key, type)
ENV_OVERRIDES = {
    'ZKVOTE_BUILD_DIR': ('zk_proofs', 'build_dir', str),
    'ZKVOTE_PTAU_FILE': ('zk_proofs', 'ptau_file', str),
    'ZKVOTE_PROOF_TIMEOUT': ('zk_proofs', 'proof_timeout', float),
    'ZKVOTE_MAX_CONCURRENT_PROOFS': ('zk_proofs', 'max_concurrent_proofs', int),
    'ZKVOTE_LEDGER_BACKEND': ('ledger', 'backend', str),
    'ZKVOTE_DATABASE': ('ledger', 'database_path', str),
    'ZKVOTE_HOST': ('api', 'host', str),
    'ZKVOTE_PORT': ('api', 'port', int),
    'ZKVOTE_LOG_LEVEL': (None, 'log_level', str),
}


def _apply_env_overrides(config_data: Dict[str, Any], environ=None) -> Dict[str, Any]:
    environ = os.environ if environ is None else environ
    for var, (section, key, cast) in ENV_OVERRIDES.items():
        if var not in environ:
            continue
        try:
            value = cast(environ[var])
        except ValueError:
            raise ValueError(f"Invalid value for {var}: {environ[var]!r}") from None
        target = config_data.setdefault(section, {}) if section else config_data
        target[key] = value
        logger.debug(f"Config override from {var}")
    return config_data


def _only_known(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    known = cls.__dataclass_fields__.keys()
    unknown = set(data) - set(known)
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
    return {k: v for k, v in data.items() if k in known}


def config_from_dict(config_data: Dict[str, Any]) -> SystemConfig:
    zk_config = ZKConfig(**_only_known(ZKConfig, config_data.get('zk_proofs') or {}))
    ledger_config = LedgerConfig(**_only_known(LedgerConfig, config_data.get('ledger') or {}))
    api_config = ApiConfig(**_only_known(ApiConfig, config_data.get('api') or {}))

    return SystemConfig(
        zk_config=zk_config,
        ledger_config=ledger_config,
        api_config=api_config,
        elections=config_data.get('elections') or [],
        log_dir=Path(config_data.get('log_dir', 'logs')),
        log_level=config_data.get('log_level', 'INFO'),
        enable_debug_mode=config_data.get('enable_debug_mode', False),
        metrics_window=config_data.get('metrics_window', 10000),
    )


def load_config(config_path: Optional[Path] = None, environ=None) -> SystemConfig:
    """Load configuration from YAML, falling back to defaults, then apply env overrides"""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config_path = Path(config_path)

    config_data: Dict[str, Any] = {}
    if config_path.exists():
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
        if not isinstance(config_data, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")
        logger.info(f"Loaded configuration from {config_path}")
    else:
        logger.info(f"No config file at {config_path}, using defaults")

    return config_from_dict(_apply_env_overrides(config_data, environ))


def config_to_dict(config: SystemConfig) -> Dict[str, Any]:
    zk = config.zk_config
    return {
        'zk_proofs': {
            'circuit_name': zk.circuit_name,
            'curve': zk.curve,
            'build_dir': str(zk.build_dir),
            'circuit_dir': str(zk.circuit_dir),
            'node_modules_dir': str(zk.node_modules_dir),
            'ptau_power': zk.ptau_power,
            'ptau_file': str(zk.ptau_file),
            'ptau_urls': list(zk.ptau_urls),
            'ptau_blake2b': zk.ptau_blake2b,
            'allow_dev_ptau': zk.allow_dev_ptau,
            'ceremony_participants': zk.ceremony_participants,
            'apply_beacon': zk.apply_beacon,
            'verify_zkey': zk.verify_zkey,
            'proof_timeout': zk.proof_timeout,
            'max_concurrent_proofs': zk.max_concurrent_proofs,
            'command_timeout': zk.command_timeout,
            'circom_bin': zk.circom_bin,
            'snarkjs_bin': zk.snarkjs_bin,
            'node_bin': zk.node_bin,
        },
        'ledger': {
            'backend': config.ledger_config.backend,
            'database_path': str(config.ledger_config.database_path),
        },
        'api': {
            'host': config.api_config.host,
            'port': config.api_config.port,
            'voter_header': config.api_config.voter_header,
        },
        'log_dir': str(config.log_dir),
        'log_level': config.log_level,
        'enable_debug_mode': config.enable_debug_mode,
        'metrics_window': config.metrics_window,
        'elections': [dict(entry) for entry in config.elections],
    }


def save_config(config: SystemConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file"""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w') as f:
        yaml.safe_dump(config_to_dict(config), f, default_flow_style=False)
    logger.info(f"Saved configuration to {config_path}")
