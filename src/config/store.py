"""
Structured configuration store.

Holds everything an operator changes at runtime: the pipeline run
config, the task schedules, and the source keys per source type. The
document is a single JSON file validated by pydantic and only ever
rewritten through the typed accessors below.
"""

import logging
import threading
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from src.config.sources import get_default_source_keys
from src.ingestion.schemas import SourceType
from src.pipeline.config import PipelineRunConfig
from src.scheduler.schemas import ScheduleConfig

logger = logging.getLogger(__name__)

DIGEST_TASK = "digest-pipeline"
CACHE_SWEEP_TASK = "cache-sweep"


def default_schedules() -> list[ScheduleConfig]:
    return [
        ScheduleConfig(
            name=DIGEST_TASK,
            cron_pattern="0 9 * * *",
            retry_attempts=3,
            retry_delay_seconds=60.0,
        ),
        ScheduleConfig(
            name=CACHE_SWEEP_TASK,
            cron_pattern="0 2 * * *",
            retry_attempts=1,
            retry_delay_seconds=300.0,
        ),
    ]


class ConfigStoreError(Exception):
    """The configuration file exists but cannot be parsed."""


class PipelineConfigDocument(BaseModel):
    """On-disk shape of the configuration store."""

    version: int = 1
    pipeline: PipelineRunConfig = Field(default_factory=PipelineRunConfig)
    schedules: list[ScheduleConfig] = Field(default_factory=default_schedules)
    sources: dict[SourceType, list[str]] = Field(default_factory=get_default_source_keys)


class ConfigStore:
    """
    Typed read/write access to the configuration document.

    Reads go to disk every time so that edits made by another process
    (for example the CLI while ``serve`` is running) are picked up on
    the next read. Writes are atomic: the document is written to a
    temporary sibling file and renamed over the original.

    Usage:
        store = ConfigStore(Path("pipeline_config.json"))
        config = store.get_pipeline_config()
        store.set_pipeline_config(config.model_copy(update={"post_to_slack": True}))
    """

    def __init__(self, path: Path | str):
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> PipelineConfigDocument:
        """
        Read and validate the document.

        A missing file yields the defaults.

        Raises:
            ConfigStoreError: file is unreadable or fails validation
        """
        if not self._path.exists():
            return PipelineConfigDocument()
        try:
            return PipelineConfigDocument.model_validate_json(
                self._path.read_text(encoding="utf-8")
            )
        except (OSError, ValidationError) as e:
            raise ConfigStoreError(f"Invalid configuration in {self._path}: {e}") from e

    def save(self, document: PipelineConfigDocument) -> None:
        """Write the document atomically."""
        content = document.model_dump_json(indent=2)
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp_path.write_text(content, encoding="utf-8")
            tmp_path.replace(self._path)
        logger.info("Configuration saved to %s", self._path)

    # Pipeline run config

    def get_pipeline_config(self) -> PipelineRunConfig:
        return self.load().pipeline

    def set_pipeline_config(self, config: PipelineRunConfig) -> None:
        document = self.load()
        self.save(document.model_copy(update={"pipeline": config}))

    # Schedules

    def get_schedules(self) -> list[ScheduleConfig]:
        return self.load().schedules

    def get_schedule(self, name: str) -> ScheduleConfig | None:
        for schedule in self.get_schedules():
            if schedule.name == name:
                return schedule
        return None

    def upsert_schedule(self, schedule: ScheduleConfig) -> None:
        """Add ``schedule`` or replace the one with the same name."""
        document = self.load()
        schedules = [s for s in document.schedules if s.name != schedule.name]
        schedules.append(schedule)
        self.save(document.model_copy(update={"schedules": schedules}))

    def remove_schedule(self, name: str) -> bool:
        """Remove a schedule. Returns False if no schedule had that name."""
        document = self.load()
        schedules = [s for s in document.schedules if s.name != name]
        if len(schedules) == len(document.schedules):
            return False
        self.save(document.model_copy(update={"schedules": schedules}))
        return True

    # Source keys

    def get_source_keys(self, source_type: SourceType | None = None) -> dict[SourceType, list[str]]:
        sources = self.load().sources
        if source_type is not None:
            return {source_type: list(sources.get(source_type, []))}
        return {source: list(keys) for source, keys in sources.items()}

    def set_source_keys(self, source_type: SourceType, keys: list[str]) -> None:
        """Replace the keys of one source type. Duplicates are dropped, order kept."""
        document = self.load()
        sources = dict(document.sources)
        sources[source_type] = list(dict.fromkeys(k.strip() for k in keys if k.strip()))
        self.save(document.model_copy(update={"sources": sources}))
