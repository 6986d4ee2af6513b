# Default output collaborators: dataset sink and key-value store
import json
import os
from datetime import datetime
from typing import Any, Dict, TextIO

from itemadapter import ItemAdapter  # type: ignore[import-untyped]

import shared.logger_factory as logger_factory


class JsonlDatasetSink:
    """
    Append-only dataset that saves records to a JSONL file.

    Each record is written as a single JSON line and flushed right away, so
    records pushed before a failed run are kept.
    """

    def __init__(self, output_dir: str, output_file: str | None = None) -> None:
        self.output_dir = output_dir
        if not output_file:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            output_file = f"redfin_properties_{timestamp}.jsonl"
        self.output_file = output_file
        self.filepath = os.path.join(self.output_dir, self.output_file)
        self.record_count = 0
        self._file: TextIO | None = None

    def open(self) -> None:
        if self._file is not None:
            return
        os.makedirs(self.output_dir, exist_ok=True)
        self._file = open(self.filepath, 'a', encoding='utf-8')
        logger_factory.get_logger(__name__).info(f"JSONL dataset: output file opened at {self.filepath}")

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
            logger_factory.get_logger(__name__).info(
                f"JSONL dataset: output file closed. Total records written: {self.record_count}"
            )

    async def push_data(self, record: Any) -> None:
        """Write one record (dataclass item or dict) as a JSON line."""
        if self._file is None:
            self.open()
        assert self._file is not None

        record_dict = ItemAdapter(record).asdict() if ItemAdapter.is_item(record) else dict(record)
        self._file.write(json.dumps(record_dict, ensure_ascii=False) + '\n')
        self._file.flush()

        self.record_count += 1
        if self.record_count % 10 == 0:
            logger_factory.get_logger(__name__).info(
                f"JSONL dataset: written {self.record_count} records to {self.filepath}"
            )


class JsonFileKeyValueStore:
    """Key-value store keeping each value as <directory>/<key>.json."""

    def __init__(self, directory: str) -> None:
        self.directory = directory

    def path_for(self, key: str) -> str:
        return os.path.join(self.directory, f"{key}.json")

    async def set_value(self, key: str, value: Dict[str, Any]) -> None:
        os.makedirs(self.directory, exist_ok=True)
        with open(self.path_for(key), 'w', encoding='utf-8') as f:
            json.dump(value, f, ensure_ascii=False, indent=2)
        logger_factory.get_logger(__name__).info(f"Key-value store: saved {key} to {self.path_for(key)}")
