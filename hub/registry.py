"""
连接器注册表：system_name (不区分大小写) -> Connector。

启动时注册，随后 freeze()；之后只读。
"""

import logging
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from hub.config_loader import SystemInstance
from hub.connectors.base import Connector
from hub.errors import ConnectorNotFound

logger = logging.getLogger(__name__)


class RegistryFrozen(RuntimeError):
    pass


class Registry:
    def __init__(self):
        self._connectors: Dict[str, Connector] = {}
        self._frozen = False

    def register(self, connector: Connector):
        if self._frozen:
            raise RegistryFrozen(f"Registry is frozen; cannot register '{connector.system_name}'")
        key = connector.system_name.lower()
        if not key:
            raise ValueError("Connector has no system_name")
        if key in self._connectors:
            raise ValueError(f"Connector '{connector.system_name}' is already registered")
        self._connectors[key] = connector
        logger.info(f"已注册连接器: {connector.system_name} ({len(connector.get_instances())} 个实例)")

    def freeze(self):
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def find(self, system_name: str) -> Optional[Connector]:
        return self._connectors.get((system_name or "").lower())

    def get(self, system_name: str) -> Connector:
        connector = self.find(system_name)
        if connector is None:
            raise ConnectorNotFound(system_name)
        return connector

    def connectors(self) -> Mapping[str, Connector]:
        return MappingProxyType(self._connectors)

    def list_connectors(self) -> List[Connector]:
        return list(self._connectors.values())

    def all_instances(self) -> List[Tuple[str, SystemInstance]]:
        return [
            (connector.system_name, instance)
            for connector in self._connectors.values()
            for instance in connector.get_instances()
        ]

    def __contains__(self, system_name: str) -> bool:
        return self.find(system_name) is not None

    def __len__(self) -> int:
        return len(self._connectors)
