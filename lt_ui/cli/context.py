"""Lazily built services shared by the CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from lt_controller.orchestrator import Orchestrator
from lt_controller.settings import OrchestratorSettings
from lt_controller.store import JsonJobStore
from lt_ui.presenter import Presenter


@dataclass
class CLIContext:
    """Container for settings, store and orchestrator, built on first use."""

    data_dir: Optional[Path] = None
    store_path: Optional[Path] = None

    _settings: Optional[OrchestratorSettings] = None
    _store: Optional[JsonJobStore] = None
    _orchestrator: Optional[Orchestrator] = None
    _presenter: Optional[Presenter] = None

    @property
    def settings(self) -> OrchestratorSettings:
        if self._settings is None:
            self._settings = OrchestratorSettings.from_env(data_dir=self.data_dir)
        return self._settings

    @settings.setter
    def settings(self, value: OrchestratorSettings) -> None:
        self._settings = value

    @property
    def store(self) -> JsonJobStore:
        if self._store is None:
            self._store = JsonJobStore(self.store_path or self.settings.store_path)
        return self._store

    @store.setter
    def store(self, value: JsonJobStore) -> None:
        self._store = value

    @property
    def orchestrator(self) -> Orchestrator:
        if self._orchestrator is None:
            self._orchestrator = Orchestrator(self.store, self.settings)
        return self._orchestrator

    @orchestrator.setter
    def orchestrator(self, value: Orchestrator) -> None:
        self._orchestrator = value

    @property
    def present(self) -> Presenter:
        if self._presenter is None:
            self._presenter = Presenter()
        return self._presenter

    @present.setter
    def present(self, value: Presenter) -> None:
        self._presenter = value

    def reset(self) -> None:
        self._settings = None
        self._store = None
        self._orchestrator = None
