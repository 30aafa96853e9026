from typing import Any, Mapping

import yaml

from splinevar.utils.logger import get_logger

LOGGER = get_logger(__name__)

_MISSING = object()


class YAMLConfig:
    def __init__(self, yaml_file: str):
        with open(yaml_file, "r") as f:
            self._cfg: Mapping[str, Any] = yaml.safe_load(f) or {}

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "YAMLConfig":
        obj = cls.__new__(cls)
        obj._cfg = cfg
        return obj

    def to_dict(self) -> Mapping[str, Any]:
        return self._cfg

    def __len__(self) -> int:
        return len(self._cfg)

    def __contains__(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __getitem__(self, key: str) -> Any:
        nested_keys = key.split(":")
        data = self._cfg
        try:
            for k in nested_keys[:-1]:
                data = data[k]
            return data[nested_keys[-1]]
        except (KeyError, TypeError) as e:
            LOGGER.error("Invalid config key: %s", key)
            raise KeyError(key) from e

    def get(self, key: str, default: Any = None) -> Any:
        nested_keys = key.split(":")
        data = self._cfg
        for k in nested_keys:
            if not isinstance(data, Mapping) or k not in data:
                return default
            data = data[k]
        return data
