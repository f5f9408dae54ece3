# kubelab_sim/config.py
"""
Настройки симуляции. Читаются из переменных окружения с префиксом KUBELAB_
(например, KUBELAB_STARTUP_DELAY=2.5).
"""
from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SimSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="KUBELAB_", env_file=".env", extra="ignore")

    # Время в секундах симуляционных часов
    startup_delay: float = Field(default=1.0, ge=0, description="Pending -> Running delay")
    termination_grace: float = Field(default=0.5, ge=0, description="Terminating -> removal delay")
    tick_interval: float = Field(default=2.0, gt=0, description="Simulation tick period")

    # Стартовый кластер
    initial_nodes: int = Field(default=3, ge=0, description="Nodes created with a new cluster")
    node_capacity: Optional[int] = Field(default=10, ge=0, description="Max pods per initial node")

    # Защита от зацикливания
    max_event_depth: int = Field(default=8, ge=1, description="Nested publish depth limit")
    max_reconcile_passes: int = Field(default=100, ge=1, description="Reconcile passes per run")
    max_replicas: int = Field(default=50, ge=1, description="Upper bound for replicas in commands")

    # HTTP-сервер
    auto_tick: bool = Field(default=True, description="Run the tick loop inside the server")
    log_level: str = Field(default="INFO", description="Root log level for the launcher")
