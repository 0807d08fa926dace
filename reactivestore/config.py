"""
Store 配置模組。

使用 pydantic 模型描述 Store 的可調參數，並支援從環境變數載入。
"""
import logging
import os
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ValidationError, field_validator, model_validator

from .errors import ConfigurationError

_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET")


class StoreConfig(BaseModel):
    """
    Store 的配置。

    屬性:
        name: Store 名稱，用於日誌
        strict_reentrancy: 在 should_execute 內重入 dispatch 時是否直接拋出錯誤
        log_level: reactivestore 日誌等級
        log_to_file: 是否將日誌寫入檔案
        log_file: 日誌檔案路徑
    """

    model_config = {"frozen": True}

    name: str = "store"
    strict_reentrancy: bool = True
    log_level: str = "WARNING"
    log_to_file: bool = False
    log_file: Optional[str] = None

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: Any) -> str:
        level = str(value).strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"unknown log level {value!r}")
        return level

    @model_validator(mode="after")
    def _check_log_file(self) -> "StoreConfig":
        if self.log_to_file and not self.log_file:
            raise ValueError("log_file is required when log_to_file is enabled")
        return self

    @property
    def level(self) -> int:
        """日誌等級對應的 logging 常數。"""
        return logging.getLevelName(self.log_level)

    @classmethod
    def create(cls, **values: Any) -> "StoreConfig":
        """
        建立配置，驗證失敗時轉換為 ConfigurationError。
        """
        try:
            return cls(**values)
        except ValidationError as err:
            first = err.errors()[0]
            key = ".".join(str(p) for p in first.get("loc", ())) or None
            raise ConfigurationError(
                f"invalid store configuration: {first.get('msg')}",
                component="StoreConfig", config_key=key,
            ) from err

    @classmethod
    def from_env(cls, prefix: str = "REACTIVESTORE_",
                 environ: Optional[Mapping[str, str]] = None) -> "StoreConfig":
        """
        從環境變數載入配置，例如 REACTIVESTORE_LOG_LEVEL=DEBUG。

        Args:
            prefix: 環境變數前綴
            environ: 要讀取的映射，預設為 os.environ

        Returns:
            StoreConfig 實例
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for field_name in cls.model_fields:
            raw = environ.get(prefix + field_name.upper())
            if raw is not None:
                values[field_name] = raw
        return cls.create(**values)
