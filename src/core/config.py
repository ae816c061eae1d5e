"""Configuración del Core.

Por qué aquí:
- Centraliza variables de entorno (pydantic-settings) sin contaminar la CLI.
- Permite que adaptadores (transporte, auth, pipeline) lean config de forma consistente.
- Gestiona el fichero de preferencias del usuario (`~/.flowctl/config.json`).

Orden de precedencia efectivo: preferencias < variables de entorno < flags de la CLI.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from enum import Enum
from pathlib import Path

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

LAST_CHECK_FORMAT = "%m-%d-%Y"


class ApiEnvironment(str, Enum):
    """Entorno del control plane al que apunta la CLI."""

    PROD = "prod"
    STAGING = "staging"
    AUTOPUSH = "autopush"


def get_user_config_dir() -> Path:
    """Directorio de configuración por usuario (`~/.flowctl`)."""

    return Path.home() / ".flowctl"


def get_user_env_file() -> Path:
    return get_user_config_dir() / ".env"


def get_preferences_path() -> Path:
    return get_user_config_dir() / "config.json"


class AppSettings(BaseSettings):
    """Configuración central de la aplicación.

    Por qué pydantic-settings:
    - Tipado + validación en el borde (env vars) sin ensuciar el Core con lógica.
    - Un único contrato de configuración para CLI/adapters.
    """

    model_config = SettingsConfigDict(
        env_prefix="FLOWCTL_",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
        # Orden: proyecto primero (dev), luego config global de usuario.
        env_file=(".env", str(get_user_env_file())),
        env_file_encoding="utf-8",
    )

    dry_run: bool = Field(
        default=False,
        description="No contacta la red: cada request devuelve un éxito vacío.",
    )
    debug: bool = Field(default=False, description="Activa logging DEBUG.")
    skip_log: bool = Field(default=False, description="Silencia todo el logging.")
    skip_cache: bool = Field(
        default=False,
        description="No persiste el token obtenido en el fichero de preferencias.",
    )
    strict_overrides: bool = Field(
        default=False,
        description="Eleva los warnings de overrides a errores.",
    )
    conflicts_as_success: bool = Field(
        default=True,
        description="Un 409 (ya existe) se trata como éxito con warning.",
    )

    http_timeout_seconds: float | None = Field(
        default=60.0,
        gt=0,
        description="Timeout por request (segundos). None desactiva el timeout.",
    )
    user_agent: str = Field(
        default="flowctl/0.1",
        min_length=1,
        description="User-Agent para el control plane.",
    )

    integrations_rate_per_second: float = Field(
        default=6.0,
        gt=0,
        description="Requests por segundo permitidas contra la API de integraciones.",
    )
    connectors_rate_per_second: float = Field(
        default=1.0,
        gt=0,
        description="Requests por segundo permitidas contra la API de conectores.",
    )
    transfer_concurrency: int = Field(
        default=4,
        ge=1,
        le=256,
        description="Workers por defecto para export/import.",
    )
    file_separator: str = Field(
        default="+",
        min_length=1,
        max_length=1,
        description="Separador en los nombres de fichero versionados.",
    )

    google_application_credentials: Path | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "GOOGLE_APPLICATION_CREDENTIALS",
            "FLOWCTL_GOOGLE_APPLICATION_CREDENTIALS",
        ),
        description="Ruta al JSON de service account (credencial ambiente).",
    )
    preferences_path: Path = Field(
        default_factory=get_preferences_path,
        description="Ruta del fichero de preferencias JSON.",
    )


class CliPreferences(BaseModel):
    """Preferencias persistidas entre ejecuciones.

    Nota: las claves en disco van en camelCase para compatibilidad con ficheros existentes.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    token: str | None = Field(default=None, description="Último access token obtenido.")
    last_check: str | None = Field(
        default=None,
        alias="lastCheck",
        description="Fecha (MM-DD-YYYY) de la última validación del token.",
    )
    default_project: str | None = Field(default=None, alias="defaultProject")
    region: str | None = Field(default=None)
    proxy_url: str | None = Field(default=None, alias="proxyUrl")
    nocheck: bool = Field(default=False, description="No validar el token contra tokeninfo.")
    api: ApiEnvironment = Field(default=ApiEnvironment.PROD)

    def checked_today(self, today: date | None = None) -> bool:
        if not self.last_check:
            return False
        try:
            checked = datetime.strptime(self.last_check, LAST_CHECK_FORMAT).date()
        except ValueError:
            return False
        return checked == (today or date.today())


def read_preferences(path: Path | None = None) -> CliPreferences:
    """Lee el fichero de preferencias.

    Un fichero corrupto (JSON inválido o valores fuera de contrato) se elimina y se
    devuelven preferencias por defecto.
    """

    path = path or get_preferences_path()
    if not path.exists():
        return CliPreferences()

    try:
        raw = path.read_text(encoding="utf-8")
        if not raw.strip():
            return CliPreferences()
        return CliPreferences.model_validate(json.loads(raw))
    except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
        logger.warning("Preferences file %s is invalid (%s); deleting it", path, exc)
        path.unlink(missing_ok=True)
        return CliPreferences()


def write_preferences(prefs: CliPreferences, path: Path | None = None) -> Path:
    """Escribe las preferencias (JSON UTF-8, formato estable)."""

    path = path or get_preferences_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = prefs.model_dump(mode="json", by_alias=True, exclude_none=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return path


def update_preferences(path: Path | None = None, **values: object) -> CliPreferences:
    """Actualiza solo las claves provistas (las `None` se ignoran)."""

    data = read_preferences(path).model_dump()
    data.update({k: v for k, v in values.items() if v is not None})
    # Se re-valida: un `api` fuera de prod|staging|autopush lanza ValidationError.
    updated = CliPreferences.model_validate(data)
    write_preferences(updated, path)
    return updated
