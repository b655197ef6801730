# === FILE: site_cloner/config.py ===
"""
Модуль для загрузки и валидации конфигурации SiteCloner.
Используется Pydantic для описания схемы и проверки данных.
"""
from __future__ import annotations

import errno
import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, Literal, Mapping, Optional, Tuple, Union

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    field_validator,
    model_validator,
)

# Пресеты User-Agent; "default" оставляет UA браузера без изменений.
USER_AGENTS: Dict[str, Optional[str]] = {
    "default": None,
    "chrome-windows": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
    "chrome-mac": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
    "safari-iphone": (
        "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1"
    ),
    "firefox-linux": "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0",
}


class SettleConfig(BaseModel):
    """Параметры ожидания «успокоения» страницы после навигации."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    grace: float = Field(2.0, ge=0, description="Пауза перед началом опроса (секунд).")
    poll_interval: float = Field(0.5, gt=0, description="Интервал опроса сетевой активности.")
    idle_threshold: float = Field(2.5, gt=0, description="Тишина в сети, после которой страница готова.")
    max_wait: float = Field(30.0, gt=0, description="Жёсткий лимит ожидания на страницу.")


class ClonerConfig(BaseModel):
    """Конфигурация для одного запуска клонирования."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    base_url: HttpUrl = Field(..., description="Стартовый URL для обхода.")
    max_depth: int = Field(2, ge=0, description="Максимальная глубина обхода ссылок.")
    max_pages: int = Field(500, ge=1, description="Жесткий лимит по числу страниц.")
    workers: int = Field(3, ge=1, le=16, description="Число параллельных воркеров.")
    max_retries: int = Field(2, ge=0, le=5, description="Число повторных попыток на страницу.")
    domain_filter: bool = Field(True, description="Записывать только трафик своего домена.")
    stealth: bool = Field(False, description="Случайные задержки и подмена отпечатка.")
    user_agent: str = Field("default", min_length=1, description="Пресет или строка User-Agent.")
    capture_mode: Literal["background", "foreground"] = Field(
        "background", description="Снимок в скрытой вкладке или в активной."
    )
    keep_query: bool = Field(False, description="Сохранять query-строку при нормализации URL.")
    headless: bool = Field(True, description="Запускать браузер без окна.")
    scroll: bool = Field(True, description="Прокручивать страницу для ленивой загрузки.")

    task_delay: float = Field(0.2, ge=0, description="Пауза между задачами (секунд).")
    stealth_delay_min: float = Field(0.5, ge=0)
    stealth_delay_max: float = Field(1.5, ge=0)
    keep_alive_interval: float = Field(20.0, gt=0, description="Интервал keep-alive пинга.")
    background_timeout: float = Field(20.0, gt=0, description="Таймаут загрузки скрытой вкладки.")
    background_settle_delay: float = Field(1.5, ge=0, description="Пауза после загрузки вкладки.")
    persist_interval: float = Field(5.0, ge=0, description="Минимум секунд между сохранениями.")
    settle: SettleConfig = Field(default_factory=SettleConfig)

    state_dir: Path = Field(Path(".site_cloner"), description="Каталог сохранённого состояния.")
    output_dir: Path = Field(Path("output"), description="Куда складывать архивы.")

    @field_validator("user_agent")
    def _strip_user_agent(cls, v: str) -> str:
        return v.strip()

    @model_validator(mode="after")
    def _check_delay_range(self) -> ClonerConfig:
        if self.stealth_delay_max < self.stealth_delay_min:
            raise ValueError("stealth_delay_max must be >= stealth_delay_min")
        return self

    @property
    def seed_url(self) -> str:
        return str(self.base_url)

    @property
    def resolved_user_agent(self) -> Optional[str]:
        """Строка UA для браузера; None: оставить значение браузера по умолчанию."""
        if self.user_agent in USER_AGENTS:
            return USER_AGENTS[self.user_agent]
        return self.user_agent

    @property
    def effective_workers(self) -> int:
        # в активной вкладке одновременно может идти только одна навигация
        return 1 if self.capture_mode == "foreground" else self.workers


DEFAULT_CONFIG_PATH = Path("configs/default.yaml")

# суффикс файла → (название формата, парсер, ошибка разбора)
_PARSERS: Dict[str, Tuple[str, Callable[[str], Any], Tuple[type, ...]]] = {
    ".yaml": ("YAML", yaml.safe_load, (yaml.YAMLError,)),
    ".yml": ("YAML", yaml.safe_load, (yaml.YAMLError,)),
    ".json": ("JSON", json.loads, (json.JSONDecodeError,)),
}


def read_config_file(path: Path) -> Dict[str, Any]:
    """Разбирает YAML/JSON-файл конфигурации в словарь (пустой файл → {})."""
    try:
        kind, parse, errors = _PARSERS[path.suffix.lower()]
    except KeyError:
        raise ValueError(f"Неподдерживаемый формат конфига: {path.suffix or path.name}") from None
    try:
        data = parse(path.read_text(encoding="utf-8"))
    except errors as exc:
        raise ValueError(f"Неправильный {kind} в {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise TypeError(f"Верхний уровень {kind} должен быть mapping, получено {type(data).__name__}")
    return data


def load_config(
    path: Union[str, Path, None],
    overrides: Optional[Mapping[str, Any]] = None,
) -> ClonerConfig:
    """
    Читает YAML или JSON, накладывает overrides (значения None пропускаются)
    и возвращает проверенный объект ClonerConfig.

    Без явного пути используется configs/default.yaml, если он существует.
    Явно указанный, но отсутствующий файл даёт FileNotFoundError.
    """
    if path is not None:
        source = Path(path).expanduser()
        if not source.is_file():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(source))
        data = read_config_file(source)
    elif DEFAULT_CONFIG_PATH.is_file():
        data = read_config_file(DEFAULT_CONFIG_PATH)
    else:
        data = {}

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value
    return ClonerConfig(**data)


__all__ = ["ClonerConfig", "DEFAULT_CONFIG_PATH", "SettleConfig", "USER_AGENTS", "load_config", "read_config_file"]
