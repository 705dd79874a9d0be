from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import platformdirs
import yaml
from dotenv import load_dotenv

APP_NAME = "verifactu"

KEYRING_SERVICE = "verifactu"
KEYRING_USERNAME = "cert-password"


def _resolve_config_dir_for_dotenv() -> Path | None:
    """Resolve config dir for .env loading without depending on env vars from .env itself.

    Returns None if only platformdirs would resolve and that dir does not exist.
    """
    from_env = os.environ.get("VERIFACTU_CONFIG_DIR")
    if from_env:
        return Path(from_env)
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / "config"
    if candidate.is_dir():
        return candidate
    pd = Path(platformdirs.user_config_dir(APP_NAME))
    if pd.is_dir():
        return pd
    return None


# Load .env: cwd first (highest priority), then config dir (won't override)
load_dotenv()
_cfg_dir = _resolve_config_dir_for_dotenv()
if _cfg_dir is not None:
    load_dotenv(_cfg_dir / ".env")


def _resolve_dir(env_var: str, default_subdir: str, kind: str) -> Path:
    """Resolve a directory from env var, repo layout, or platform default.

    Priority: 1) env var, 2) dev repo layout, 3) platformdirs user directory.
    """
    from_env = os.environ.get(env_var)
    if from_env:
        return Path(from_env)
    # Development layout: src/verifactu/config.py -> ../../.. = project root
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / default_subdir
    if candidate.is_dir():
        return candidate
    if kind == "config":
        return Path(platformdirs.user_config_dir(APP_NAME))
    return Path(platformdirs.user_data_dir(APP_NAME))


def get_config_dir() -> Path:
    """Resolve config directory. Re-evaluated on each call to pick up env changes."""
    return _resolve_dir("VERIFACTU_CONFIG_DIR", "config", kind="config")


def get_data_dir() -> Path:
    """Resolve data directory. Re-evaluated on each call to pick up env changes."""
    return _resolve_dir("VERIFACTU_DATA_DIR", "data", kind="data")


def get_lock_dir() -> Path:
    """Directory holding the per-issuer chain lock files."""
    return get_data_dir() / "locks"


# --- Wire constants ---

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"

_AEAT_WS = (
    "https://www2.agenciatributaria.gob.es/static_files/common/internet/dep/"
    "aplicaciones/es/aeat/tike/cont/ws"
)
SUM_NS = f"{_AEAT_WS}/SuministroLR.xsd"
SUM1_NS = f"{_AEAT_WS}/SuministroInformacion.xsd"

NSMAP = {"soapenv": SOAP_ENV_NS, "sum": SUM_NS, "sum1": SUM1_NS}

ENDPOINTS = {
    "sandbox": "https://prewww1.aeat.es/wlpl/TIKE-CONT/ws/SistemaFacturacion/VerifactuSOAP",
    "production": (
        "https://www1.agenciatributaria.gob.es/wlpl/TIKE-CONT/ws/"
        "SistemaFacturacion/VerifactuSOAP"
    ),
}

CONNECT_TIMEOUT = 10
READ_TIMEOUT = 60
OVERALL_TIMEOUT = 120  # per attempt, connect to last body byte

USER_AGENT = "verifactu-python/0.1.0"

ID_VERSION = "1.0"
HASH_TYPE = "01"  # SHA-256
HOME_COUNTRY = "ES"


def endpoint_for(production: bool) -> str:
    return ENDPOINTS["production" if production else "sandbox"]


# --- Keyring helpers ---


def _get_keyring_password() -> str | None:
    """Try to get the certificate password from the OS keyring.

    Returns None on any failure (no backend, not stored, dbus errors, etc.).
    """
    try:
        import keyring

        return keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
    except Exception:
        return None


def _set_keyring_password(password: str) -> bool:
    """Store the certificate password in the OS keyring. Returns True on success."""
    try:
        import keyring

        keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, password)
        return True
    except Exception:
        return False


def _delete_keyring_password() -> bool:
    """Remove the certificate password from the OS keyring. Returns True on success."""
    try:
        import keyring

        keyring.delete_password(KEYRING_SERVICE, KEYRING_USERNAME)
        return True
    except Exception:
        return False


# --- Certificate / environment access ---


def get_cert_path() -> str:
    """Return the path to the PKCS#12 certificate from VERIFACTU_CERT_PATH.

    Raises KeyError if the variable is not set.
    """
    return os.environ["VERIFACTU_CERT_PATH"]


def get_cert_password() -> str | None:
    """Return the certificate passphrase, or None when the certificate has none.

    Priority: 1) VERIFACTU_CERT_PASSWORD env var, 2) OS keyring.
    """
    pwd = os.environ.get("VERIFACTU_CERT_PASSWORD")
    if pwd is not None:
        return pwd
    return _get_keyring_password()


def is_production() -> bool:
    """True when VERIFACTU_PRODUCTION is set to a truthy value."""
    return os.environ.get("VERIFACTU_PRODUCTION", "").strip().lower() in ("1", "true", "yes", "s")


# --- Issuer / system identification ---


def _flag(value: object, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().upper() in ("S", "1", "TRUE", "YES")


@dataclass(frozen=True)
class SystemConfig:
    """Issuer identity and billing-system identification sent with every record.

    Read-only for the duration of a submission; passed explicitly to the composer.
    """

    issuer_name: str
    issuer_tax_id: str
    system_name: str
    system_id: str
    system_version: str
    installation_number: str
    solo_verifactu: bool = True
    multi_ot: bool = False
    multiple_ot: bool = False
    representative_name: str | None = None
    representative_tax_id: str | None = None
    home_country: str = HOME_COUNTRY

    @classmethod
    def from_dict(cls, d: dict) -> SystemConfig:
        """Create a SystemConfig from a YAML-loaded dict, applying defaults for optional fields."""
        issuer = d["issuer"]
        system = d.get("system", {})
        representative = d.get("representative") or {}
        return cls(
            issuer_name=issuer["name"],
            issuer_tax_id=str(issuer["tax_id"]),
            system_name=system.get("name", "verifactu-python"),
            system_id=str(system.get("id", "VP")),
            system_version=str(system.get("version", "0.1.0")),
            installation_number=str(system.get("installation_number", "001")),
            solo_verifactu=_flag(system.get("solo_verifactu"), True),
            multi_ot=_flag(system.get("multi_ot"), False),
            multiple_ot=_flag(system.get("multiple_ot"), False),
            representative_name=representative.get("name"),
            representative_tax_id=(
                str(representative["tax_id"]) if representative.get("tax_id") else None
            ),
            home_country=d.get("home_country", HOME_COUNTRY),
        )


def load_yaml(path: Path) -> dict:
    """Load and parse a YAML file, returning the top-level dict."""
    return yaml.safe_load(path.read_text())


def load_system_config() -> SystemConfig:
    """Load issuer and system identification from config/issuer.yaml."""
    return SystemConfig.from_dict(load_yaml(get_config_dir() / "issuer.yaml"))
