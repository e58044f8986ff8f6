"""Application entry point for the Nano Bananary project."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from config.settings import AppConfig, load_config
from modules.pipelines.gateway import GenerationGateway
from modules.pipelines.orchestrator import PipelineOrchestrator
from modules.pipelines.try_on import VirtualTryOnFlow
from modules.prompts.catalog import TransformationRegistry
from modules.services.history_service import GenerationHistoryService
from modules.services.storage_service import StorageService
from modules.ui.callbacks import build_callbacks
from modules.ui.state import SessionState, TransformationOrderStore
from modules.utils.logging import setup_logging


@dataclass(slots=True)
class Workspace:
    """Wired services plus the callbacks a front end binds to."""

    config: AppConfig
    orchestrator: PipelineOrchestrator
    history: GenerationHistoryService
    storage: StorageService
    state: SessionState
    try_on: VirtualTryOnFlow
    callbacks: Dict[str, Callable[..., Any]]


def create_app(config_path: Optional[str] = None, client: Optional[Any] = None) -> Workspace:
    """Load configuration and wire every service of the workspace."""
    config = load_config(config_path)
    logger = setup_logging(config)

    storage = StorageService(config.media_dir)
    history = GenerationHistoryService(config.history_path, storage=storage)
    gateway = GenerationGateway(config, client=client)
    orchestrator = PipelineOrchestrator(gateway, history, config=config, storage=storage)
    registry = TransformationRegistry()
    custom_catalog = config.data_dir / "transformations.json"
    registry.load_from_file(custom_catalog)

    state = SessionState()
    callbacks = build_callbacks(
        config,
        orchestrator,
        history,
        storage=storage,
        state=state,
        registry=registry,
        order_store=TransformationOrderStore(config.transformation_order_path),
    )
    logger.info("Workspace ready with %d transformations", len(state.transformations))
    return Workspace(
        config=config,
        orchestrator=orchestrator,
        history=history,
        storage=storage,
        state=state,
        try_on=VirtualTryOnFlow(orchestrator),
        callbacks=callbacks,
    )


def main(config_path: Optional[str] = None) -> None:
    """Load configuration, restore history and list the available transformations."""
    workspace = create_app(config_path)
    _, message = workspace.callbacks["on_load_history"]()
    print(message)
    for spec in workspace.state.transformations:
        print(f"{spec.emoji} {spec.key}: {spec.title}")
    workspace.storage.revoke_all()
    workspace.history.close()


if __name__ == "__main__":
    main()
